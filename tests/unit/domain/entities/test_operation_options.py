from nocobase.domain.entities import OperationOptions


def test_defaults():
    options = OperationOptions()

    assert options.transaction is None
    assert options.logging is None
    assert options.hooks is True
    assert options.fields is None
    assert options.tree is False
    assert options.context == {}


def test_passthrough_carries_transaction_and_logging():
    conn = object()
    statements = []
    options = OperationOptions(transaction=conn, logging=statements.append, hooks=False)

    assert options.passthrough() == {"transaction": conn, "logging": statements.append}


def test_add_field_keeps_order_without_duplicates():
    options = OperationOptions(fields=["name"])

    options.add_field("hierarchyLevel")
    options.add_field("name")

    assert options.fields == ["name", "hierarchyLevel"]


def test_add_field_starts_list():
    options = OperationOptions()

    options.add_field("sort")

    assert options.fields == ["sort"]


def test_context_is_not_shared():
    first = OperationOptions()
    first.context["user"] = 1

    assert OperationOptions().context == {}

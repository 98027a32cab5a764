"""Unit tests for ExecutionContext."""

from process_tester.execution_context import ExecutionContext


class TestAccess:
    def test_seeded_from_initial_values(self):
        ctx = ExecutionContext({"accountId": "1", "channel": "web"})

        assert ctx.get("channel") == "web"
        assert "accountId" in ctx
        assert len(ctx) == 2

    def test_initial_mapping_is_copied(self):
        initial = {"a": 1}
        ctx = ExecutionContext(initial)
        ctx.set("b", 2)

        assert initial == {"a": 1}

    def test_typed_accessors(self):
        ctx = ExecutionContext({"accountId": 123, "orderId": "o-1", "transactionId": "t-9"})

        assert ctx.account_id == "123"
        assert ctx.order_id == "o-1"
        assert ctx.transaction_id == "t-9"
        assert ctx.access_token is None

    def test_external_account_id_accepts_both_spellings(self):
        assert ExecutionContext({"externalAccountID": "x"}).external_account_id == "x"
        assert ExecutionContext({"externalAccountId": "y"}).external_account_id == "y"


class TestAbsorbResponse:
    """Identifier propagation and step-scoped extras."""

    def test_identifiers_propagate(self):
        ctx = ExecutionContext()
        propagated = ctx.absorb_response("step_0", {"accountId": "123", "status": "OPEN"})

        assert propagated == ["accountId"]
        assert ctx.account_id == "123"

    def test_every_field_is_stored_under_step_prefix(self):
        ctx = ExecutionContext()
        ctx.absorb_response("step_0", {"accountId": "123", "status": "OPEN"})

        assert ctx.get("step_0_status") == "OPEN"
        assert ctx.get("step_0_accountId") == "123"
        assert "status" not in ctx

    def test_custom_id_fields(self):
        ctx = ExecutionContext()
        ctx.absorb_response("s", {"consentId": "c-1", "id": "x"}, id_fields=("consentId",))

        assert ctx.get("consentId") == "c-1"
        assert "id" not in ctx

    def test_keys_are_never_removed(self):
        ctx = ExecutionContext({"channel": "web"})
        ctx.absorb_response("step_0", {"id": "1", "status": "A"})
        ctx.absorb_response("step_1", {"id": "2"})

        assert ctx.get("id") == "2"
        assert ctx.get("step_0_status") == "A"
        assert ctx.get("channel") == "web"

    def test_plain_values_win_over_extras_in_snapshot(self):
        ctx = ExecutionContext({"step_0_id": "plain"})
        ctx.set_extra("step_0_id", "extra")

        assert ctx.as_dict()["step_0_id"] == "plain"

    def test_fields_exclude_extras_and_access_token(self):
        ctx = ExecutionContext({"accountId": "1"})
        ctx.set("access_token", "secret-token")
        ctx.absorb_response("step_0", {"status": "OK"})

        assert ctx.fields() == {"accountId": "1"}
        assert ctx.access_token == "secret-token"

"""
Tests for the two-stage proposal validator
"""

from decimal import Decimal

import pytest

from pocket_ledger.models.proposal import EntityRef, TransactionProposal
from pocket_ledger.validation import ProposalValidator


@pytest.fixture
def validator(storage, app_settings) -> ProposalValidator:
    return ProposalValidator(storage, settings=app_settings)


def _issue_types(result) -> dict[str, str]:
    return {issue.issue_type: issue.severity for issue in result.issues}


def _proposal(**fields) -> TransactionProposal:
    defaults = {
        "type": "expense",
        "amount": Decimal("20000"),
        "currency": "COP",
        "wallet": EntityRef(name="Efectivo"),
        "raw_text": "almuerzo 20 mil",
    }
    defaults.update(fields)
    return TransactionProposal(**defaults)


class TestSchemaStage:
    """Stage 1"""

    @pytest.mark.asyncio
    async def test_missing_amount_blocks_commit(self, validator):
        result = await validator.validate(_proposal(amount=0))

        assert not result.schema_valid
        assert not result.can_commit
        assert _issue_types(result) == {"missing": "error"}

    @pytest.mark.asyncio
    async def test_missing_wallet(self, validator):
        result = await validator.validate(_proposal(wallet=EntityRef()))

        assert result.has_errors
        assert result.issues[0].field == "wallet"

    @pytest.mark.asyncio
    async def test_transfer_to_itself(self, validator):
        result = await validator.validate(_proposal(
            type="transfer",
            wallet=EntityRef(name="Nequi"),
            wallet_destination=EntityRef(name="nequi "),
        ))

        assert not result.can_commit
        assert _issue_types(result)["invalid_value"] == "error"

    @pytest.mark.asyncio
    async def test_transfer_without_destination_warns(self, validator):
        result = await validator.validate(_proposal(type="transfer"))

        assert result.can_commit
        assert any("destination" in warning for warning in result.warnings)


class TestSemanticStage:
    """Stage 2"""

    @pytest.mark.asyncio
    async def test_clean_proposal(self, validator, make_wallet):
        wallet = await make_wallet("Efectivo")

        result = await validator.validate(
            _proposal(wallet=EntityRef(id=wallet.id, name="Efectivo", exists=True))
        )

        assert result.is_valid
        assert result.issues == []
        assert validator.get_user_friendly_summary(result).startswith("✅")

    @pytest.mark.asyncio
    async def test_new_entities_are_info(self, validator):
        result = await validator.validate(_proposal(category=EntityRef(name="Mascotas")))

        assert result.can_commit
        assert [issue.severity for issue in result.issues] == ["info", "info"]

    @pytest.mark.asyncio
    async def test_unknown_id_blocks_commit(self, validator):
        result = await validator.validate(
            _proposal(wallet=EntityRef(id=99, name="Gone", exists=True))
        )

        assert result.schema_valid
        assert not result.semantic_valid
        assert _issue_types(result)["unknown_reference"] == "error"
        assert "cannot be saved" in validator.get_user_friendly_summary(result)

    @pytest.mark.asyncio
    async def test_archived_reference_warns(self, storage, validator, make_category):
        category = await make_category("Old")
        await storage.archive_category(category.id)

        result = await validator.validate(
            _proposal(category=EntityRef(id=category.id, name="Old", exists=True))
        )

        assert result.can_commit
        assert _issue_types(result)["archived_reference"] == "warning"

    @pytest.mark.asyncio
    async def test_low_confidence_and_clarification(self, validator):
        result = await validator.validate(_proposal(
            confidence=0.3,
            clarification="¿A qué billetera va la transferencia?",
        ))

        types = _issue_types(result)
        assert types["low_confidence"] == "warning"
        assert types["needs_clarification"] == "warning"
        assert result.can_commit
        assert "review carefully" in validator.get_user_friendly_summary(result)

    @pytest.mark.asyncio
    async def test_currency_mismatch(self, validator, make_wallet):
        wallet = await make_wallet("Dollars", currency="USD")

        result = await validator.validate(_proposal(
            wallet=EntityRef(id=wallet.id, name="Dollars", exists=True),
            currency="COP",
        ))

        assert _issue_types(result)["currency_mismatch"] == "warning"

    @pytest.mark.asyncio
    async def test_huge_amount_flagged(self, validator):
        result = await validator.validate(_proposal(amount=Decimal("5000000000")))

        assert _issue_types(result)["suspicious_value"] == "warning"


class TestWithoutStorage:

    @pytest.mark.asyncio
    async def test_reference_checks_skipped(self, app_settings):
        validator = ProposalValidator(settings=app_settings)

        result = await validator.validate(
            _proposal(wallet=EntityRef(id=99, name="Anything", exists=True))
        )

        assert result.is_valid

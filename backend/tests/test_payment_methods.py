# Overview: Pytest coverage for the payment method registry.

import pytest

from carpos.extensions import db
from carpos.models import PaymentMethod, RegisterPaymentMethod
from carpos.services import ledger_service, payment_method_service, register_service
from carpos.services.payment_method_service import (
    NoPaymentMethodAvailable,
    PaymentMethodUnavailable,
    RegisterNotFound,
)
from carpos.services.register_service import RegisterError
from carpos.validation import NotFoundError, ValidationError

from conftest import MANAGER_ID


pytestmark = pytest.mark.ledger


class TestDefinitions:

    def test_system_method_requires_type(self):
        with pytest.raises(ValidationError):
            payment_method_service.normalize_definition({"source": "system"})

    def test_custom_method_requires_name_and_code(self):
        with pytest.raises(ValidationError):
            payment_method_service.normalize_definition({"source": "custom", "name": "Voucher"})

    def test_custom_code_is_uppercased(self):
        clean = payment_method_service.normalize_definition(
            {"source": "custom", "name": "Fuel voucher", "code": " fuel "}
        )
        assert clean["code"] == "FUEL"
        assert clean["scope"] == "dedicated"

    def test_choices_are_case_insensitive(self):
        clean = payment_method_service.normalize_definition(
            {"source": "SYSTEM", "system_type": "Card", "scope": "SHARED"}
        )
        assert clean["source"] == "system"
        assert clean["system_type"] == "card"
        assert clean["scope"] == "shared"

    def test_rejects_unknown_scope(self):
        with pytest.raises(ValidationError):
            payment_method_service.normalize_definition(
                {"source": "system", "system_type": "cash", "scope": "global"}
            )


class TestScoping:

    def test_shared_method_is_one_record(self, register_1, register_2):
        card_1 = [b for b in payment_method_service.list_methods(register_1.id) if b.payment_method.system_type == "card"]
        card_2 = [b for b in payment_method_service.list_methods(register_2.id) if b.payment_method.system_type == "card"]

        assert card_1[0].payment_method_id == card_2[0].payment_method_id
        assert card_1[0].payment_method.register_id is None

    def test_dedicated_methods_are_separate(self, register_1, register_2):
        cash_1 = [b for b in payment_method_service.list_methods(register_1.id) if b.payment_method.system_type == "cash"]
        cash_2 = [b for b in payment_method_service.list_methods(register_2.id) if b.payment_method.system_type == "cash"]

        assert cash_1[0].payment_method_id != cash_2[0].payment_method_id
        assert cash_1[0].payment_method.register_id == register_1.id

    def test_shared_balance_visible_from_both_registers(self, register_1, register_2, card_shared):
        ledger_service.deposit(card_shared.id, 1500)

        for register in (register_1, register_2):
            bindings = payment_method_service.list_methods(register.id)
            card = [b for b in bindings if b.payment_method_id == card_shared.id][0]
            assert card.to_dict()["current_balance_cents"] == 1500

    def test_binding_is_idempotent(self, register_1):
        before = db.session.query(PaymentMethod).count()
        payment_method_service.bind_payment_method(
            register_1.id, {"source": "system", "system_type": "cash"}, actor_id=MANAGER_ID,
        )
        assert db.session.query(PaymentMethod).count() == before
        assert db.session.query(RegisterPaymentMethod).filter_by(register_id=register_1.id).count() == 2

    def test_custom_method_binding(self, register_1):
        binding = payment_method_service.bind_payment_method(
            register_1.id,
            {"source": "custom", "name": "Fleet account", "code": "fleet", "scope": "dedicated"},
        )
        d = binding.to_dict()
        assert d["source"] == "custom"
        assert d["code"] == "FLEET"
        assert d["name"] == "Fleet account"
        assert d["current_balance_cents"] == 0
        assert d["is_active"] is True

    def test_unknown_register(self, db_session):
        with pytest.raises(RegisterNotFound):
            payment_method_service.bind_payment_method(404, {"source": "system", "system_type": "qr"})


class TestActiveSet:

    def test_disable_binding_on_one_register(self, register_1, register_2, card_shared):
        payment_method_service.update_bindings(
            register_1.id, [{"payment_method_id": card_shared.id, "is_active": False}],
        )

        active_1 = {b.payment_method_id for b in payment_method_service.list_active_methods(register_1.id)}
        active_2 = {b.payment_method_id for b in payment_method_service.list_active_methods(register_2.id)}
        assert card_shared.id not in active_1
        assert card_shared.id in active_2

        # Still listed for history, flagged as not usable here only
        usable_1 = {b.payment_method_id: b.to_dict()["is_usable"] for b in payment_method_service.list_methods(register_1.id)}
        usable_2 = {b.payment_method_id: b.to_dict()["is_usable"] for b in payment_method_service.list_methods(register_2.id)}
        assert usable_1[card_shared.id] is False
        assert usable_2[card_shared.id] is True

    def test_inactive_status_hides_method_everywhere(self, register_1, register_2, card_shared):
        payment_method_service.update_bindings(
            register_1.id, [{"payment_method_id": card_shared.id, "status": "inactive"}],
        )
        active_2 = {b.payment_method_id for b in payment_method_service.list_active_methods(register_2.id)}
        assert card_shared.id not in active_2

        binding_2 = [b for b in payment_method_service.list_methods(register_2.id) if b.payment_method_id == card_shared.id][0]
        assert binding_2.is_active is True
        assert binding_2.is_usable is False

    def test_update_unbound_method(self, register_1):
        with pytest.raises(NotFoundError):
            payment_method_service.update_bindings(register_1.id, [{"payment_method_id": 9999, "is_active": False}])

    def test_update_requires_list(self, register_1):
        with pytest.raises(ValidationError):
            payment_method_service.update_bindings(register_1.id, [])

    def test_resolve_sale_method(self, register_1, register_2, card_shared, cash_1):
        assert payment_method_service.resolve_sale_method(register_1.id, cash_1.id).id == cash_1.id

        # Register 2 does not carry register 1's drawer
        with pytest.raises(PaymentMethodUnavailable):
            payment_method_service.resolve_sale_method(register_2.id, cash_1.id)

    def test_resolve_without_active_methods(self, shop):
        bare = register_service.create_register(shop.id, "Bare register")
        with pytest.raises(NoPaymentMethodAvailable):
            payment_method_service.resolve_sale_method(bare.id, 1)


class TestRegisters:

    def test_duplicate_register_name(self, shop, register_1):
        with pytest.raises(RegisterError):
            register_service.create_register(shop.id, "Register 1")

    def test_invalid_register_type(self, shop):
        with pytest.raises(ValidationError):
            register_service.create_register(shop.id, "Kiosk", register_type="DRONE")

    def test_bad_definition_rolls_back_register(self, shop):
        from carpos.models import CashRegister

        with pytest.raises(ValidationError):
            register_service.create_register(
                shop.id, "Half built",
                payment_methods=[{"source": "system", "system_type": "cash"}, {"source": "barter"}],
            )
        assert db.session.query(CashRegister).filter_by(name="Half built").count() == 0

    def test_detail_includes_methods(self, register_1):
        detail = register_service.register_detail(register_1.id)
        assert detail["name"] == "Register 1"
        assert detail["current_shift"] is None
        assert {m["system_type"] for m in detail["payment_methods"]} == {"cash", "card"}

"""
Movement validation: transition table, stock sufficiency, business rules, warnings.
"""

import itertools

import pytest

from cylinder_ledger.enums import CylinderStatus, LocationKind, MovementType
from cylinder_ledger.services.inventory_store import Location
from cylinder_ledger.services.movement_validator import TRANSITION_TABLE, MovementRequest


REFERENCE_IDS = {LocationKind.VEHICLE: 3, LocationKind.CUSTOMER: 7}


def _location(kind):
    return Location(kind, REFERENCE_IDS.get(kind))


def _movement(movement_type, from_kind, from_status, to_kind, to_status, quantity=5):
    return MovementRequest(
        cylinder_type_id=1,
        quantity=quantity,
        movement_type=movement_type,
        from_location=_location(from_kind) if from_kind is not None else None,
        from_status=from_status,
        to_location=_location(to_kind),
        to_status=to_status,
    )


@pytest.fixture
def stock_everywhere(db_session, services, cylinder_type):
    """100 units at every (kind, status) so only the table decides."""
    for kind, status in itertools.product(LocationKind, CylinderStatus):
        services.store.adjust(cylinder_type.id, _location(kind), status, 100)
    db_session.commit()


class TestTransitionTable:
    """Every combination outside the table is rejected; every one inside passes."""

    def test_table_enforcement_is_exhaustive(self, services, stock_everywhere):
        checked_valid = checked_invalid = 0
        for movement_type, rule in TRANSITION_TABLE.items():
            combos = itertools.product(CylinderStatus, CylinderStatus, LocationKind, LocationKind)
            for from_status, to_status, from_kind, to_kind in combos:
                # Governed by the empty-at-customer and self-transfer rules instead
                if to_kind == LocationKind.CUSTOMER and to_status == CylinderStatus.EMPTY:
                    continue
                if from_kind == to_kind and from_status == to_status:
                    continue

                in_table = (
                    from_status == rule.from_status
                    and to_status == rule.to_status
                    and (rule.from_kinds is None or from_kind in rule.from_kinds)
                    and (rule.to_kinds is None or to_kind in rule.to_kinds)
                )
                result = services.validator.validate(
                    _movement(movement_type, from_kind, from_status, to_kind, to_status)
                )
                combo = (movement_type.value, from_status.value, to_status.value, from_kind.value, to_kind.value)
                if in_table:
                    assert result.is_valid, (combo, result.errors)
                    checked_valid += 1
                else:
                    assert not result.is_valid, combo
                    checked_invalid += 1

        assert checked_valid > 0
        assert checked_invalid > 0

    def test_constrained_type_requires_source(self, services, stock_everywhere):
        result = services.validator.validate(
            _movement(MovementType.DELIVERY_FILLED, None, None, LocationKind.CUSTOMER, CylinderStatus.FILLED)
        )
        assert not result.is_valid
        assert any("requires a source" in error for error in result.errors)

    def test_unconstrained_types_accept_any_pairing(self, services, stock_everywhere):
        for movement_type in (MovementType.TRANSFER, MovementType.DELIVERY, MovementType.RETURN, MovementType.REFILLING_IN):
            result = services.validator.validate(
                _movement(movement_type, LocationKind.PLANT, CylinderStatus.EMPTY, LocationKind.YARD, CylinderStatus.FILLED)
            )
            assert result.is_valid, (movement_type, result.errors)


class TestBusinessRules:
    def test_quantity_must_be_positive(self, services, stock_everywhere):
        for quantity in (0, -3):
            result = services.validator.validate(
                _movement(MovementType.TRANSFER, LocationKind.YARD, CylinderStatus.FILLED,
                          LocationKind.VEHICLE, CylinderStatus.FILLED, quantity=quantity)
            )
            assert not result.is_valid
            assert "Movement quantity must be greater than 0" in result.errors

    def test_self_transfer_rejected(self, services, stock_everywhere):
        result = services.validator.validate(
            _movement(MovementType.TRANSFER, LocationKind.VEHICLE, CylinderStatus.FILLED,
                      LocationKind.VEHICLE, CylinderStatus.FILLED)
        )
        assert not result.is_valid
        assert any("same location" in error for error in result.errors)

    def test_same_location_different_status_allowed(self, services, stock_everywhere):
        result = services.validator.validate(
            _movement(MovementType.ADJUSTMENT, LocationKind.YARD, CylinderStatus.FILLED,
                      LocationKind.YARD, CylinderStatus.EMPTY)
        )
        assert result.is_valid

    def test_empty_cylinders_never_land_at_customer(self, services, stock_everywhere):
        result = services.validator.validate(
            _movement(MovementType.TRANSFER, LocationKind.YARD, CylinderStatus.EMPTY,
                      LocationKind.CUSTOMER, CylinderStatus.EMPTY)
        )
        assert not result.is_valid
        assert any("customers" in error for error in result.errors)

    def test_singleton_reference_ids_do_not_defeat_self_transfer(self, services, stock_everywhere):
        movement = MovementRequest(
            cylinder_type_id=1,
            quantity=1,
            movement_type=MovementType.TRANSFER,
            from_location=Location(LocationKind.YARD, 1),
            from_status=CylinderStatus.FILLED,
            to_location=Location(LocationKind.YARD, 2),
            to_status=CylinderStatus.FILLED,
        )
        assert not services.validator.validate(movement).is_valid


class TestStockSufficiency:
    def test_shortfall_reported(self, db_session, services, cylinder_type):
        services.store.adjust(cylinder_type.id, Location(LocationKind.YARD), CylinderStatus.FILLED, 90)
        db_session.commit()

        result = services.validator.validate(
            _movement(MovementType.DELIVERY_FILLED, LocationKind.YARD, CylinderStatus.FILLED,
                      LocationKind.VEHICLE, CylinderStatus.FILLED, quantity=1000)
        )
        assert not result.is_valid
        assert result.available == 90
        assert result.shortfall == 910

    def test_adjustment_bypasses_stock_check(self, services, cylinder_type):
        result = services.validator.validate(
            _movement(MovementType.ADJUSTMENT, LocationKind.PLANT, CylinderStatus.EMPTY,
                      LocationKind.YARD, CylinderStatus.EMPTY, quantity=40)
        )
        assert result.is_valid

    def test_refilling_source_bypasses_stock_check(self, services, cylinder_type):
        result = services.validator.validate(
            _movement(MovementType.REFILLING_OUT, LocationKind.REFILLING, CylinderStatus.EMPTY,
                      LocationKind.YARD, CylinderStatus.FILLED, quantity=40)
        )
        assert result.is_valid

    def test_missing_source_position_counts_as_zero(self, services, cylinder_type):
        result = services.validator.validate(
            _movement(MovementType.TRANSFER, LocationKind.VEHICLE, CylinderStatus.FILLED,
                      LocationKind.YARD, CylinderStatus.FILLED, quantity=1)
        )
        assert not result.is_valid
        assert result.available == 0


class TestWarnings:
    def test_delivery_filled_to_vehicle_warns(self, services, stock_everywhere):
        result = services.validator.validate(
            _movement(MovementType.DELIVERY_FILLED, LocationKind.YARD, CylinderStatus.FILLED,
                      LocationKind.VEHICLE, CylinderStatus.FILLED)
        )
        assert result.is_valid
        assert result.warnings

    def test_return_empty_from_vehicle_warns(self, services, stock_everywhere):
        result = services.validator.validate(
            _movement(MovementType.RETURN_EMPTY, LocationKind.VEHICLE, CylinderStatus.FILLED,
                      LocationKind.PLANT, CylinderStatus.EMPTY)
        )
        assert result.is_valid
        assert result.warnings

    def test_customer_delivery_has_no_warnings(self, services, stock_everywhere):
        result = services.validator.validate(
            _movement(MovementType.DELIVERY_FILLED, LocationKind.VEHICLE, CylinderStatus.FILLED,
                      LocationKind.CUSTOMER, CylinderStatus.FILLED)
        )
        assert result.is_valid
        assert result.warnings == []

from .inventory import CylinderType, InventoryPosition, MovementRecord, position_key
from .delivery import Customer, Vehicle, DeliveryTransaction, DeliveryTransactionLine
from .documents import GoodsReceipt, InventoryOutboxTask, DocumentSequence
from .reconciliation import ExchangeTrackingRecord, DailyReconciliation, VarianceDetail, VehicleEndOfDayInventory

__all__ = [
    'CylinderType', 'InventoryPosition', 'MovementRecord', 'position_key',
    'Customer', 'Vehicle', 'DeliveryTransaction', 'DeliveryTransactionLine',
    'GoodsReceipt', 'InventoryOutboxTask', 'DocumentSequence',
    'ExchangeTrackingRecord', 'DailyReconciliation', 'VarianceDetail', 'VehicleEndOfDayInventory',
]

"""
Write operations against the remote API.

A write never patches the LocalStore. Once the server acknowledges it we ask
for a resync and let the reconciler apply the server's restated truth.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from pos_transport import BusinessError, PosApiError, Transport, ValidationError, as_collection, business_failure

logger = logging.getLogger(__name__)

ORDER_STATUSES = ('pending', 'cooking', 'ready', 'paid')
DEFAULT_EXPENSE_CATEGORY = 'Insumos'


def _required(value: Any, label: str) -> str:
    text = '' if value is None else str(value).strip()
    if not text:
        raise ValidationError(f'{label} is required')
    return text


def _number(value: Any, label: str, minimum: Optional[float] = None, strict: bool = False) -> float:
    if isinstance(value, bool):
        raise ValidationError(f'{label} must be numeric')
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f'{label} must be numeric') from None
    if number != number or number in (float('inf'), float('-inf')):
        raise ValidationError(f'{label} must be numeric')
    if minimum is not None:
        if strict and number <= minimum:
            raise ValidationError(f'{label} must be greater than {minimum:g}')
        if not strict and number < minimum:
            raise ValidationError(f'{label} must be at least {minimum:g}')
    return number


class MutationDispatcher:
    def __init__(self, transport: Transport, resync: Callable[[], bool]):
        self.transport = transport
        self.resync = resync

    def _write(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = self.transport.call(action, payload, 'POST')
        except PosApiError as exc:
            logger.warning("%s failed (%s): %s", action, exc.kind.value, exc)
            raise
        message = business_failure(result)
        if message is None and not (isinstance(result, dict) and result.get('success')):
            message = 'Unexpected response from server'
        if message:
            logger.warning("%s rejected: %s", action, message)
            raise BusinessError(message, action)
        # the server has accepted the write; nothing after this point may report it as failed
        try:
            synced = self.resync()
        except Exception:
            logger.exception("%s acknowledged but the follow-up sync crashed", action)
            synced = False
        if not synced:
            logger.info("%s acknowledged; view refresh waits for the next poll", action)
        return result

    # ---------- orders ----------
    def create_order(self, order_data: Mapping[str, Any]) -> Dict[str, Any]:
        order = dict(order_data or {})
        _required(order.get('table_number'), 'Table')
        if not order.get('items'):
            raise ValidationError('Order has no items')
        return self._write('createOrder', {'orderData': order})

    def update_order_status(self, order_id: Any, status: str) -> Dict[str, Any]:
        order_id = _required(order_id, 'Order id')
        status = _required(status, 'Status').lower()
        if status not in ORDER_STATUSES:
            raise ValidationError(f'Unknown order status {status}')
        return self._write('updateOrderStatus', {'orderId': order_id, 'status': status})

    # ---------- tables ----------
    def add_table(self, label: str) -> Dict[str, Any]:
        return self._write('addTable', {'label': _required(label, 'Table name')})

    def delete_table(self, table_id: Any) -> Dict[str, Any]:
        return self._write('deleteTable', {'tableId': _required(table_id, 'Table id')})

    # ---------- products / recipes ----------
    def add_product(self, name: str, category: str, price: Any, image_url: str = '') -> Dict[str, Any]:
        product = {
            'name': _required(name, 'Product name'),
            'category': (category or '').strip() or 'General',
            'price': _number(price, 'Price', minimum=0),
            'image_url': (image_url or '').strip(),
        }
        return self._write('addProduct', {'productData': product})

    def update_product_price(self, product_id: Any, new_price: Any) -> Dict[str, Any]:
        return self._write('updateProductPrice', {
            'productId': _required(product_id, 'Product id'),
            'newPrice': _number(new_price, 'Price', minimum=0),
        })

    def add_recipe_item(self, product_id: Any, ingredient_id: Any, quantity: Any) -> Dict[str, Any]:
        return self._write('addRecipeItem', {
            'productId': _required(product_id, 'Product id'),
            'ingredientId': _required(ingredient_id, 'Ingredient id'),
            'quantity': _number(quantity, 'Quantity', minimum=0, strict=True),
        })

    def delete_recipe_item(self, product_id: Any, ingredient_id: Any) -> Dict[str, Any]:
        return self._write('deleteRecipeItem', {
            'productId': _required(product_id, 'Product id'),
            'ingredientId': _required(ingredient_id, 'Ingredient id'),
        })

    # ---------- inventory ----------
    def add_inventory_item(self, name: str, unit: str, current_stock: Any = 0, min_stock: Any = 0) -> Dict[str, Any]:
        item = {
            'name': _required(name, 'Item name'),
            'unit': _required(unit, 'Unit'),
            'current_stock': _number(current_stock, 'Current stock', minimum=0),
            'min_stock': _number(min_stock, 'Minimum stock', minimum=0),
        }
        return self._write('addInventoryItem', {'itemData': item})

    def update_inventory(self, item_id: Any, quantity: Any) -> Dict[str, Any]:
        qty = _number(quantity, 'Quantity')
        if qty == 0:
            raise ValidationError('Quantity must not be zero')
        return self._write('updateInventory', {'itemId': _required(item_id, 'Item id'), 'quantity': qty})

    # ---------- finance ----------
    def register_expense(self, description: str, amount: Any, category: Optional[str] = None,
                         user_id: Optional[str] = None) -> Dict[str, Any]:
        expense = {
            'description': _required(description, 'Description'),
            'amount': _number(amount, 'Amount', minimum=0, strict=True),
            'category': (category or '').strip() or DEFAULT_EXPENSE_CATEGORY,
            'userId': user_id or 'admin',
        }
        return self._write('registerExpense', {'expenseData': expense})

    def dispatch(self, action: str, payload: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Route a remote action name plus its wire payload to the matching write."""
        p = dict(payload or {})
        product = _mapping(p.get('productData'))
        item = _mapping(p.get('itemData'))
        expense = _mapping(p.get('expenseData'))
        routes: Dict[str, Callable[[], Dict[str, Any]]] = {
            'createOrder': lambda: self.create_order(_mapping(p.get('orderData'))),
            'updateOrderStatus': lambda: self.update_order_status(p.get('orderId'), p.get('status')),
            'addTable': lambda: self.add_table(p.get('label')),
            'deleteTable': lambda: self.delete_table(p.get('tableId')),
            'addProduct': lambda: self.add_product(
                product.get('name'), product.get('category'), product.get('price'), product.get('image_url') or ''),
            'updateProductPrice': lambda: self.update_product_price(p.get('productId'), p.get('newPrice')),
            'addRecipeItem': lambda: self.add_recipe_item(p.get('productId'), p.get('ingredientId'), p.get('quantity')),
            'deleteRecipeItem': lambda: self.delete_recipe_item(p.get('productId'), p.get('ingredientId')),
            'addInventoryItem': lambda: self.add_inventory_item(
                item.get('name'), item.get('unit'), item.get('current_stock', 0), item.get('min_stock', 0)),
            'updateInventory': lambda: self.update_inventory(p.get('itemId'), p.get('quantity')),
            'registerExpense': lambda: self.register_expense(
                expense.get('description'), expense.get('amount'), expense.get('category'), expense.get('userId')),
        }
        route = routes.get(action)
        if route is None:
            raise ValidationError(f'Unknown action {action}')
        return route()


def _mapping(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


class QueryClient:
    """Read-through queries; results are shown as-is and never cached."""

    def __init__(self, transport: Transport):
        self.transport = transport

    def get_products(self) -> list:
        return as_collection(self.transport.call('getProducts'), 'products')

    def get_tables_status(self) -> list:
        return as_collection(self.transport.call('getTablesStatus'), 'tables')

    def get_recipe(self, product_id: Any) -> list:
        result = self.transport.call('getRecipe', {'productId': _required(product_id, 'Product id')})
        return as_collection(result, 'recipe', 'items')

    def get_inventory_logs(self, item_id: Any = None) -> list:
        params = {'itemId': str(item_id)} if item_id not in (None, '') else {}
        return as_collection(self.transport.call('getInventoryLogs', params), 'logs')

    def get_dashboard_stats(self) -> Dict[str, Any]:
        return _as_object(self.transport.call('getDashboardStats'))

    def get_advanced_stats(self, period: Optional[str] = None) -> Dict[str, Any]:
        params = {'period': period} if period else {}
        return _as_object(self.transport.call('getAdvancedStats', params))

    def run(self, action: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        p = dict(params or {})
        routes: Dict[str, Callable[[], Any]] = {
            'getProducts': self.get_products,
            'getTablesStatus': self.get_tables_status,
            'getRecipe': lambda: self.get_recipe(p.get('productId')),
            'getInventoryLogs': lambda: self.get_inventory_logs(p.get('itemId')),
            'getDashboardStats': self.get_dashboard_stats,
            'getAdvancedStats': lambda: self.get_advanced_stats(p.get('period')),
        }
        route = routes.get(action)
        if route is None:
            raise ValidationError(f'Unknown query {action}')
        return route()


def _as_object(result: Any) -> Dict[str, Any]:
    message = business_failure(result)
    if message:
        raise BusinessError(message)
    if isinstance(result, dict):
        return result.get('data') if isinstance(result.get('data'), dict) else result
    raise BusinessError('Unexpected response from server')

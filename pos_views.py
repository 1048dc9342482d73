"""
View dispatch for the till.

Each view is a pure function of the LocalStore returning a JSON-ready dict.
Switching views renders from whatever is cached; the next sync refreshes it.
"""
from __future__ import annotations

import enum
import logging
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from pos_store import LocalStore

logger = logging.getLogger(__name__)

CURRENCY_PREFIX = 'S/'

Renderer = Callable[[LocalStore], Dict[str, Any]]
Listener = Callable[[str, Dict[str, Any]], None]


class Role(enum.Enum):
    ADMIN = 'admin'
    WAITER = 'waiter'
    KITCHEN = 'kitchen'
    CASHIER = 'cashier'
    PUBLIC = 'public'


# Names used by the backend's user sheet
ROLE_ALIASES = {
    'mozo': Role.WAITER,
    'cocina': Role.KITCHEN,
    'cajero': Role.CASHIER,
    'caja': Role.CASHIER,
}

_ROLE_VIEWS = {
    Role.ADMIN: ('dashboard', 'tables', 'products', 'inventory', 'finance', 'stats'),
    Role.WAITER: ('tables', 'waiter'),
    Role.KITCHEN: ('kitchen',),
    Role.CASHIER: ('cashier',),
    Role.PUBLIC: ('menu', 'tables'),
}


def normalize_role(raw: Any) -> Role:
    if isinstance(raw, Role):
        return raw
    text = str(raw or '').strip().lower()
    if text in ROLE_ALIASES:
        return ROLE_ALIASES[text]
    try:
        return Role(text)
    except ValueError:
        return Role.PUBLIC


def views_for_role(role: Role) -> FrozenSet[str]:
    return frozenset(_ROLE_VIEWS[role])


def default_view(role: Role) -> str:
    return _ROLE_VIEWS[role][0]


def _num(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _money(value: Any) -> str:
    return f"{CURRENCY_PREFIX} {_num(value):.2f}"


def _stats(store: LocalStore) -> Dict[str, Any]:
    return store.stats if isinstance(store.stats, dict) else {}


def _table_label(table: Dict[str, Any]) -> str:
    return table.get('label') or f"Mesa {table.get('id')}"


def _is_paid(order: Dict[str, Any]) -> bool:
    return order.get('status') == 'paid'


def _paid_sales(store: LocalStore) -> float:
    return sum(_num(o.get('total')) for o in store.orders if _is_paid(o))


def _order_lines(order: Dict[str, Any]) -> List[str]:
    lines = []
    for item in order.get('items') or []:
        name = item.get('product_name') or item.get('name') or item.get('id') or '?'
        lines.append(f"{item.get('quantity', 1)}x {name}")
    return lines


def render_dashboard(store: LocalStore) -> Dict[str, Any]:
    stats = _stats(store)
    total_sales = stats.get('totalSales')
    if total_sales is None:
        total_sales = _paid_sales(store)
    occupied = sum(1 for t in store.tables if t.get('status') == 'occupied')
    low_stock = sum(1 for i in store.inventory if _num(i.get('current_stock')) < _num(i.get('min_stock')))
    return {
        'view': 'dashboard',
        'total_sales': _num(total_sales),
        'total_sales_display': _money(total_sales),
        'order_count': stats.get('orderCount', len(store.orders)),
        'tables_occupied': occupied,
        'tables_free': len(store.tables) - occupied,
        'low_stock_count': low_stock,
    }


def render_tables(store: LocalStore) -> Dict[str, Any]:
    tables = []
    for t in store.tables:
        orders = t.get('orders') or []
        tables.append({
            'id': t.get('id'),
            'label': _table_label(t),
            'status': t.get('status') or 'free',
            'occupied': t.get('status') == 'occupied',
            'current_order': orders[0] if orders else None,
        })
    return {'view': 'tables', 'tables': tables}


def _products_by_category(store: LocalStore) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for p in store.products:
        grouped.setdefault(p.get('category') or 'General', []).append({
            'id': p.get('id'),
            'name': p.get('name'),
            'price': _num(p.get('price')),
            'price_display': _money(p.get('price')),
            'image_url': p.get('image_url') or '',
        })
    return grouped


def render_menu(store: LocalStore) -> Dict[str, Any]:
    return {'view': 'menu', 'categories': _products_by_category(store)}


def render_waiter(store: LocalStore) -> Dict[str, Any]:
    return {
        'view': 'waiter',
        'categories': _products_by_category(store),
        'table_options': [{'id': t.get('id'), 'label': _table_label(t)} for t in store.tables],
    }


def render_kitchen(store: LocalStore) -> Dict[str, Any]:
    tickets = [o for o in store.orders if o.get('status') in ('pending', 'cooking', 'ready')]
    # ready tickets sink to the bottom; otherwise oldest first
    tickets.sort(key=lambda o: (o.get('status') == 'ready', str(o.get('created_at') or '')))
    return {
        'view': 'kitchen',
        'tickets': [{
            'id': o.get('id'),
            'table_number': o.get('table_number'),
            'status': o.get('status'),
            'updated_at': o.get('updated_at'),
            'lines': _order_lines(o),
            'can_mark_ready': o.get('status') != 'ready',
        } for o in tickets],
    }


def render_cashier(store: LocalStore) -> Dict[str, Any]:
    rows = []
    for o in store.orders:
        if _is_paid(o):
            continue
        rows.append({
            'id': o.get('id'),
            'short_id': '#' + str(o.get('id', ''))[-4:],
            'table_number': o.get('table_number'),
            'waiter_id': o.get('waiter_id'),
            'total': _num(o.get('total')),
            'total_display': _money(o.get('total')),
            'status': o.get('status'),
        })
    return {'view': 'cashier', 'orders': rows}


def render_inventory(store: LocalStore) -> Dict[str, Any]:
    items = []
    for item in store.inventory:
        stock = _num(item.get('current_stock'))
        items.append({
            'id': item.get('id'),
            'name': item.get('name'),
            'unit': item.get('unit'),
            'current_stock': round(stock, 2),
            'min_stock': _num(item.get('min_stock')),
            'low_stock': stock < _num(item.get('min_stock')),
        })
    return {'view': 'inventory', 'items': items}


def render_finance(store: LocalStore) -> Dict[str, Any]:
    sales = _paid_sales(store)
    spent = sum(_num(e.get('amount')) for e in store.expenses)
    return {
        'view': 'finance',
        'sales': round(sales, 2),
        'expenses': round(spent, 2),
        'profit': round(sales - spent, 2),
        # backend appends expenses chronologically
        'expense_list': [{
            'date': e.get('date'),
            'description': e.get('description'),
            'category': e.get('category'),
            'amount': _num(e.get('amount')),
            'amount_display': '- ' + _money(e.get('amount')),
        } for e in reversed(store.expenses)],
    }


def render_products(store: LocalStore) -> Dict[str, Any]:
    return {
        'view': 'products',
        'products': [{
            'id': p.get('id'),
            'name': p.get('name'),
            'category': p.get('category'),
            'price': _num(p.get('price')),
        } for p in store.products],
    }


def render_stats(store: LocalStore) -> Dict[str, Any]:
    stats = _stats(store)
    return {
        'view': 'stats',
        'period': stats.get('period'),
        'top_products': list(stats.get('topProducts') or []),
        'waiter_performance': list(stats.get('waiterPerformance') or []),
    }


BUILTIN_VIEWS: Dict[str, Renderer] = {
    'dashboard': render_dashboard,
    'tables': render_tables,
    'menu': render_menu,
    'waiter': render_waiter,
    'kitchen': render_kitchen,
    'cashier': render_cashier,
    'inventory': render_inventory,
    'finance': render_finance,
    'products': render_products,
    'stats': render_stats,
}


class ViewRegistry:
    """Maps view ids to renderers and tracks which one is on screen."""

    def __init__(self, renderers: Optional[Dict[str, Renderer]] = None):
        self._renderers: Dict[str, Renderer] = dict(BUILTIN_VIEWS if renderers is None else renderers)
        self._listeners: List[Listener] = []
        self.active: Optional[str] = None
        self.last_rendered: Dict[str, Dict[str, Any]] = {}

    def register(self, view_id: str, renderer: Renderer) -> None:
        self._renderers[view_id] = renderer

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def __contains__(self, view_id: str) -> bool:
        return view_id in self._renderers

    def render(self, view_id: str, store: LocalStore) -> Dict[str, Any]:
        renderer = self._renderers.get(view_id)
        if renderer is None:
            raise KeyError(f'Unknown view {view_id}')
        with store.lock:
            rendered = renderer(store)
        self.last_rendered[view_id] = rendered
        logger.debug("Rendered view %s", view_id)
        for listener in list(self._listeners):
            listener(view_id, rendered)
        return rendered

    def activate(self, view_id: str, store: LocalStore) -> Dict[str, Any]:
        if view_id not in self._renderers:
            raise KeyError(f'Unknown view {view_id}')
        self.active = view_id
        return self.render(view_id, store)

    def refresh_active(self, store: LocalStore) -> Optional[Dict[str, Any]]:
        if self.active is None:
            return None
        return self.render(self.active, store)

    def deactivate(self) -> None:
        self.active = None
        self.last_rendered.clear()

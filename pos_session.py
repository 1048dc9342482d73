"""Operator session for one till: login, role scoped sync, views, cart and writes."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

import pos_config
from pos_cart import Cart
from pos_mutations import MutationDispatcher, QueryClient
from pos_store import LocalStore, reset
from pos_transport import BusinessError, Transport, ValidationError, business_failure
from pos_views import Role, ViewRegistry, default_view, normalize_role, render_waiter, views_for_role
from sync_worker import SyncScheduler

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str], Transport]


class NotLoggedIn(PermissionError):
    pass


class PosSession:
    def __init__(self, settings: pos_config.PosSettings,
                 settings_store: Optional[pos_config.SettingsStore] = None,
                 transport_factory: Optional[TransportFactory] = None,
                 store: Optional[LocalStore] = None,
                 views: Optional[ViewRegistry] = None):
        self.settings = settings
        self.settings_store = settings_store or pos_config.SettingsStore(settings.settings_db)
        self._transport_factory = transport_factory or (
            lambda url: Transport(url, timeout=settings.http_timeout))
        self.store = store or LocalStore()
        self.views = views or ViewRegistry()
        self.cart = Cart()
        self.views.register('waiter', self._render_waiter)
        self.user: Optional[Dict[str, Any]] = None
        self.role: Optional[Role] = None
        self.transport: Optional[Transport] = None
        self.scheduler: Optional[SyncScheduler] = None
        self.mutations: Optional[MutationDispatcher] = None
        self.queries: Optional[QueryClient] = None
        url = pos_config.load_api_url(self.settings_store, settings)
        if url:
            self._connect(url)

    # ---------- setup ----------
    @property
    def needs_setup(self) -> bool:
        return self.transport is None

    @property
    def logged_in(self) -> bool:
        return self.user is not None

    def configure_endpoint(self, url: str) -> str:
        clean = pos_config.save_api_url(self.settings_store, url)
        if self.logged_in:
            self.logout()
        self._connect(clean)
        logger.info("Remote endpoint configured")
        return clean

    def _connect(self, url: str) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()
        if self.transport is not None:
            self.transport.close()
        self.transport = self._transport_factory(url)
        self.scheduler = SyncScheduler(
            self.transport,
            self.store,
            self.views,
            interval=self.settings.sync_interval,
            drop_stale=self.settings.drop_stale,
        )
        self.mutations = MutationDispatcher(self.transport, self.scheduler.resync)
        self.queries = QueryClient(self.transport)

    def _require_transport(self) -> Transport:
        if self.transport is None:
            raise NotLoggedIn('Remote endpoint is not configured')
        return self.transport

    def _require_user(self) -> Dict[str, Any]:
        if self.user is None:
            raise NotLoggedIn('Not logged in')
        return self.user

    # ---------- auth ----------
    def login(self, username: str, password: str) -> Dict[str, Any]:
        transport = self._require_transport()
        if not (username or '').strip() or not password:
            raise ValidationError('Username and password are required')
        result = transport.call('login', {'username': username.strip(), 'password': password}, 'GET')
        message = business_failure(result)
        if message or not (isinstance(result, dict) and result.get('success')):
            raise BusinessError(message or 'Login failed', 'login')
        if self.logged_in:
            self.logout()
        self.user = dict(result)
        self.role = normalize_role(result.get('role'))
        logger.info("Session started for %s (role=%s)", result.get('id') or username, self.role.value)
        period = self.settings.sync_period if self.role is Role.ADMIN else None
        self.scheduler.start(self.role, period)
        rendered = self.views.activate(default_view(self.role), self.store)
        return {'user': self.user, 'role': self.role.value, 'view': rendered}

    def logout(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()
        reset(self.store)
        self.cart.clear()
        self.views.deactivate()
        if self.user is not None:
            logger.info("Session closed for %s", self.user.get('id') or self.user.get('name'))
        self.user = None
        self.role = None

    # ---------- views ----------
    def allowed_views(self) -> frozenset:
        self._require_user()
        return views_for_role(self.role)

    def show_view(self, view_id: str) -> Dict[str, Any]:
        if view_id not in self.allowed_views():
            raise PermissionError(f'View {view_id} is not available for {self.role.value}')
        return self.views.activate(view_id, self.store)

    # ---------- cart ----------
    def add_to_cart(self, product_id: Any, quantity: int = 1) -> Dict[str, Any]:
        self._require_user()
        with self.store.lock:
            product = next((dict(p) for p in self.store.products if str(p.get('id')) == str(product_id)), None)
        if product is None:
            raise ValidationError(f'Unknown product {product_id}')
        self.cart.add(product, quantity)
        return self.cart_view()

    def cart_view(self) -> Dict[str, Any]:
        return self.cart.summary()

    def _render_waiter(self, store: LocalStore) -> Dict[str, Any]:
        return {**render_waiter(store), 'cart': self.cart_view()}

    def submit_order(self, table_number: Any) -> Dict[str, Any]:
        user = self._require_user()
        if not self.cart:
            raise ValidationError('Cart is empty')
        order_data = {
            'table_number': table_number,
            'waiter_id': user.get('id'),
            'items': self.cart.as_order_items(),
            'total': self.cart.total(),
        }
        result = self.mutations.create_order(order_data)
        # only an acknowledged order empties the cart
        self.cart.clear()
        if self.views.active == 'waiter':
            try:
                self.views.refresh_active(self.store)
            except Exception:
                logger.exception("Order accepted but the waiter view failed to redraw")
        return result

    # ---------- writes / queries ----------
    def mutate(self, action: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        user = self._require_user()
        payload = dict(payload or {})
        if action == 'registerExpense' and isinstance(payload.get('expenseData'), dict):
            payload['expenseData'].setdefault('userId', user.get('id'))
        return self.mutations.dispatch(action, payload)

    def query(self, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        self._require_user()
        return self.queries.run(action, params)

    def sync_status(self) -> Dict[str, Any]:
        if self.scheduler is None:
            return {'running': False, 'last_sync_at': None}
        return self.scheduler.status()

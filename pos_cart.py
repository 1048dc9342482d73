"""Waiter cart. Lives only in the till session and is never synced.

Request threads edit the cart while the sync thread renders it, so every
method takes the cart's own lock.
"""
from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Any, Dict, List

from pos_transport import ValidationError


def _positive_int(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError('Quantity must be a positive integer')
    return quantity


class Cart:
    def __init__(self):
        self._lines: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)

    def __bool__(self) -> bool:
        with self._lock:
            return bool(self._lines)

    def add(self, product: Dict[str, Any], quantity: int = 1) -> Dict[str, Any]:
        """Add a product; a product already in the cart gets its quantity bumped."""
        quantity = _positive_int(quantity)
        product_id = product.get('id') if isinstance(product, dict) else None
        if product_id in (None, ''):
            raise ValidationError('Product id is required')
        key = str(product_id)
        with self._lock:
            line = self._lines.get(key)
            if line:
                line['quantity'] += quantity
            else:
                line = {'product': dict(product), 'quantity': quantity}
                self._lines[key] = line
            return {'product': dict(line['product']), 'quantity': line['quantity']}

    def set_quantity(self, product_id: Any, quantity: int) -> None:
        key = str(product_id)
        with self._lock:
            if key not in self._lines:
                raise KeyError(key)
            if quantity == 0:
                del self._lines[key]
                return
            self._lines[key]['quantity'] = _positive_int(quantity)

    def lines(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [{'product': dict(l['product']), 'quantity': l['quantity']} for l in self._lines.values()]

    def total(self) -> float:
        total = 0.0
        with self._lock:
            for line in self._lines.values():
                try:
                    price = float(line['product'].get('price') or 0)
                except (TypeError, ValueError):
                    price = 0.0
                total += price * line['quantity']
        return round(total, 2)

    def summary(self) -> Dict[str, Any]:
        """Lines, total and count read in one go."""
        with self._lock:
            return {'lines': self.lines(), 'total': self.total(), 'count': len(self._lines)}

    def as_order_items(self) -> List[Dict[str, Any]]:
        """Order lines in the shape createOrder expects: product fields + quantity."""
        with self._lock:
            return [{**l['product'], 'quantity': l['quantity']} for l in self._lines.values()]

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()

"""Inline keyboards and their callback payloads."""

from __future__ import annotations

from typing import Iterable, Literal

from aiogram.filters.callback_data import CallbackData
from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from solgate.domain.models import Product
from solgate.i18n import I18nService


class MenuCallback(CallbackData, prefix="menu"):
    section: Literal["home", "buy", "status", "pricing", "support"]


class ProductCallback(CallbackData, prefix="buy"):
    product: str


class DurationCallback(CallbackData, prefix="dur"):
    product: str
    months: int


class InvoiceCallback(CallbackData, prefix="inv"):
    action: Literal["paid", "cancel"]
    invoice_id: int


def home_keyboard(i18n: I18nService) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.button(text=i18n.gettext("button.buy"), callback_data=MenuCallback(section="buy"))
    builder.button(text=i18n.gettext("button.status"), callback_data=MenuCallback(section="status"))
    builder.button(text=i18n.gettext("button.pricing"), callback_data=MenuCallback(section="pricing"))
    builder.button(text=i18n.gettext("button.support"), callback_data=MenuCallback(section="support"))
    builder.adjust(1)
    return builder.as_markup()


def products_keyboard(i18n: I18nService, products: Iterable[Product]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for product in products:
        builder.button(
            text=f"{product.icon} {product.name}",
            callback_data=ProductCallback(product=product.key),
        )
    builder.button(text=i18n.gettext("button.back"), callback_data=MenuCallback(section="home"))
    builder.adjust(1)
    return builder.as_markup()


def duration_keyboard(
    i18n: I18nService, product_key: str, options: Iterable[int]
) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    count = 0
    for months in options:
        builder.button(
            text=i18n.gettext("button.months", months=months),
            callback_data=DurationCallback(product=product_key, months=months),
        )
        count += 1
    builder.button(text=i18n.gettext("button.back"), callback_data=MenuCallback(section="buy"))
    builder.adjust(*([2] * (count // 2)), *([1] * (count % 2)), 1)
    return builder.as_markup()


def invoice_keyboard(i18n: I18nService, invoice_id: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.button(
        text=i18n.gettext("button.paid"),
        callback_data=InvoiceCallback(action="paid", invoice_id=invoice_id),
    )
    builder.button(
        text=i18n.gettext("button.cancel"),
        callback_data=InvoiceCallback(action="cancel", invoice_id=invoice_id),
    )
    builder.button(
        text=i18n.gettext("button.back_to_menu"),
        callback_data=MenuCallback(section="home"),
    )
    builder.adjust(1)
    return builder.as_markup()


__all__ = [
    "DurationCallback",
    "InvoiceCallback",
    "MenuCallback",
    "ProductCallback",
    "duration_keyboard",
    "home_keyboard",
    "invoice_keyboard",
    "products_keyboard",
]

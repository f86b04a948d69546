from __future__ import annotations
import logging
import re
from typing import Optional

from cart import CartReconciler
from notifications import NotificationCenter
from orders import OrderGateway
from schemas import Order, OrderLine, PaymentMethod, ShippingAddress

logger = logging.getLogger(__name__)

PAYMENT_METHODS: list[PaymentMethod] = [
    PaymentMethod(id="multicaixa", name="Multicaixa Express", description="Pague de forma segura com o seu cartão Multicaixa."),
    PaymentMethod(id="bank_transfer", name="Transferência Bancária", description="Detalhes da conta serão fornecidos após a encomenda."),
    PaymentMethod(id="unitel_money", name="Unitel Money", description="Pague convenientemente com Unitel Money."),
    PaymentMethod(id="cod", name="Pagamento na Entrega (Cash on Delivery)", description="Pague em dinheiro no momento da entrega."),
]

PROVINCES: list[str] = [
    "Luanda", "Benguela", "Huambo", "Huila", "Bengo", "Bié", "Cabinda", "Cuando Cubango",
    "Cuanza Norte", "Cuanza Sul", "Cunene", "Lunda Norte", "Lunda Sul", "Malanje",
    "Moxico", "Namibe", "Uíge", "Zaire",
]

PHONE_RE = re.compile(r"^[0-9]{9}$")


def payment_method_name(method_id: Optional[str]) -> str:
    method = next((m for m in PAYMENT_METHODS if m.id == method_id), None)
    return method.name if method else (method_id or "Não especificado")


def validate_checkout(address: ShippingAddress, payment_method: Optional[str]) -> dict[str, str]:
    """Field name -> message for every field that blocks the order. Empty means valid."""
    errors: dict[str, str] = {}
    if not address.full_name.strip():
        errors["full_name"] = "Nome completo é obrigatório."
    if not address.address.strip():
        errors["address"] = "Endereço é obrigatório."
    if not address.city.strip():
        errors["city"] = "Cidade é obrigatória."
    if not address.province.strip():
        errors["province"] = "Província é obrigatória."
    elif address.province not in PROVINCES:
        errors["province"] = "Província inválida."
    if not address.phone_number.strip():
        errors["phone_number"] = "Telefone é obrigatório."
    elif not PHONE_RE.match(re.sub(r"\s", "", address.phone_number)):
        errors["phone_number"] = "Número de telefone inválido (ex: 9xx xxx xxx)."
    if not payment_method:
        errors["payment"] = "Por favor, selecione um método de pagamento."
    elif payment_method not in {m.id for m in PAYMENT_METHODS}:
        errors["payment"] = "Método de pagamento inválido."
    return errors


class CheckoutError(Exception):
    pass


class EmptyCart(CheckoutError):
    pass


class SubmissionInProgress(CheckoutError):
    pass


class InvalidCheckout(CheckoutError):
    def __init__(self, errors: dict[str, str]):
        super().__init__("Invalid checkout form")
        self.errors = errors


class OrderFailed(CheckoutError):
    pass


class CheckoutFlow:
    """Turns the visitor's cart into a stored order."""

    def __init__(self, cart: CartReconciler, orders: OrderGateway, notifications: NotificationCenter):
        self.cart = cart
        self.orders = orders
        self.notifications = notifications
        self.is_processing = False
        self.last_order: Optional[Order] = None

    async def place_order(self, address: ShippingAddress, payment_method: Optional[str]) -> Order:
        if self.is_processing:
            raise SubmissionInProgress()
        if not self.cart.items:
            raise EmptyCart()
        errors = validate_checkout(address, payment_method)
        if errors:
            raise InvalidCheckout(errors)

        self.is_processing = True
        try:
            return await self._submit(address, payment_method)
        finally:
            self.is_processing = False

    async def _submit(self, address: ShippingAddress, payment_method: Optional[str]) -> Order:
        # Prices are taken from the cart as it is right now.
        lines = [
            OrderLine(
                product_id=item.product_id,
                name=item.product.name,
                category=item.product.category,
                image_urls=item.product.image_urls[:1],
                quantity=item.quantity,
                price_at_purchase=item.product.price,
            )
            for item in self.cart.items
        ]
        total = self.cart.get_total_price()
        user_id = self.cart.user_id

        try:
            header = await self.orders.create_header(user_id, total, address, payment_method)
        except Exception as e:
            logger.exception("Could not create order header")
            self.notifications.show("Erro ao criar o pedido. Tente novamente.", "error")
            raise OrderFailed(str(e)) from e

        try:
            await self.orders.create_lines(header["id"], lines)
        except Exception as e:
            logger.exception("Could not store lines of order %s, removing header", header["id"])
            try:
                await self.orders.delete_header(header["id"])
            except Exception:
                logger.exception("Could not remove orphaned order %s", header["id"])
            self.notifications.show("Erro ao guardar os itens do pedido. Tente novamente.", "error")
            raise OrderFailed(str(e)) from e

        order = Order(
            id=header["id"],
            user_id=user_id,
            items=lines,
            total_amount=total,
            shipping_address=address,
            payment_method=payment_method,
            order_date=header["created_at"],
            status="Pending",
        )
        logger.info("Order %s placed: %d lines, total %.2f", order.id, len(lines), total)
        self.cart.clear_cart()
        self.last_order = order
        return order

"""
Payment gateway integration.

The gateway's checkout widget reports back through callbacks (payment
handler, `payment.failed` event, modal dismissal). Here those are collapsed
into a single awaitable `collect()` that resolves to one PaymentOutcome.
The PaymentBridge carries that exchange over HTTP: the browser opens the
widget with the options we hand it and reports the outcome back.
"""
import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Union

import aiohttp

from storefront.config import Config
from storefront.exceptions import CheckoutInProgressError, PaymentNotFoundError
from storefront.models import (
    CheckoutResult,
    GatewayOrder,
    OrderReceipt,
    PaymentOutcome,
    PaymentVerification,
    ShippingForm,
    WidgetOptions,
    WidgetPrefill,
)

logger = logging.getLogger(__name__)


def build_widget_options(gateway_order: GatewayOrder, receipt: OrderReceipt, form: ShippingForm) -> WidgetOptions:
    """Widget options; the amount is passed through in the gateway's minor unit"""
    return WidgetOptions(
        key=Config.RAZORPAY_KEY_ID,
        amount=gateway_order.amount,
        currency=gateway_order.currency or Config.CURRENCY,
        name=Config.STORE_NAME,
        image=Config.STORE_LOGO,
        order_id=gateway_order.id,
        prefill=WidgetPrefill(name=form.full_name, email=form.email, contact=form.phone),
        notes={"orderId": receipt.order_id, "address": form.address},
        theme={"color": Config.THEME_COLOR},
    )


class PaymentWidget(ABC):
    """Client-side checkout widget of the payment gateway"""

    @abstractmethod
    async def load(self) -> bool:
        """Make the gateway script available; False when it cannot be loaded"""

    @abstractmethod
    async def collect(self, options: WidgetOptions) -> PaymentOutcome:
        """Open the widget and wait for its terminal outcome"""


class GatewayScriptLoader:
    """Fetches the gateway's checkout script once per process"""

    def __init__(self, script_url: Optional[str] = None):
        self.script_url = script_url or Config.RAZORPAY_SCRIPT_URL
        self.loaded = False

    async def ensure_loaded(self) -> bool:
        if self.loaded:
            return True
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(self.script_url) as response:
                    self.loaded = response.status == 200
        except aiohttp.ClientError as e:
            logger.warning(f"Payment gateway script unavailable: {e}")
            return False
        if not self.loaded:
            logger.warning(f"Payment gateway script returned HTTP {response.status}")
        return self.loaded


class PaymentCallbacks:
    """The three widget callbacks; the first one to fire decides the outcome"""

    def __init__(self, outcome: "asyncio.Future[PaymentOutcome]"):
        self._outcome = outcome

    def _settle(self, outcome: PaymentOutcome) -> bool:
        if self._outcome.done():
            return False
        self._outcome.set_result(outcome)
        return True

    def succeed(self, razorpay_order_id: str, razorpay_payment_id: str, razorpay_signature: str) -> bool:
        return self._settle(PaymentOutcome.succeeded(PaymentVerification(
            razorpay_order_id=razorpay_order_id,
            razorpay_payment_id=razorpay_payment_id,
            razorpay_signature=razorpay_signature,
        )))

    def fail(self, description: str) -> bool:
        return self._settle(PaymentOutcome.failed(description))

    def dismiss(self) -> bool:
        return self._settle(PaymentOutcome.cancelled())


PaymentLauncher = Callable[[WidgetOptions, PaymentCallbacks], Awaitable[None]]


class CallbackPaymentWidget(PaymentWidget):
    """Adapts a callback-style widget launcher to a single awaitable outcome"""

    def __init__(
        self,
        launcher: PaymentLauncher,
        loader: GatewayScriptLoader,
        timeout: Optional[float] = None,
    ):
        self.launcher = launcher
        self.loader = loader
        self.timeout = timeout

    async def load(self) -> bool:
        return await self.loader.ensure_loaded()

    async def collect(self, options: WidgetOptions) -> PaymentOutcome:
        outcome: "asyncio.Future[PaymentOutcome]" = asyncio.get_running_loop().create_future()
        await self.launcher(options, PaymentCallbacks(outcome))
        if self.timeout is None:
            return await outcome
        try:
            return await asyncio.wait_for(outcome, self.timeout)
        except asyncio.TimeoutError:
            logger.info(f"Payment window expired for gateway order {options.order_id}")
            return PaymentOutcome.cancelled()


@dataclass
class PendingPayment:
    session_id: str
    options: WidgetOptions
    callbacks: PaymentCallbacks
    task: "Optional[asyncio.Task[CheckoutResult]]" = None


class PaymentBridge:
    """
    Runs online checkouts across HTTP requests.

    `start()` runs the checkout flow as a task and returns as soon as the flow
    opens the widget (a PendingPayment the browser can act on) or finishes
    without reaching it (the final CheckoutResult). The browser later reports
    the widget outcome through `settle_*`, which returns the final result.
    """

    def __init__(self, loader: Optional[GatewayScriptLoader] = None):
        self.loader = loader or GatewayScriptLoader()
        self._opening: Dict[str, "asyncio.Future[PendingPayment]"] = {}
        self._pending: Dict[str, PendingPayment] = {}

    def widget_for(self, session_id: str) -> CallbackPaymentWidget:
        return CallbackPaymentWidget(
            functools.partial(self._launch, session_id),
            self.loader,
            timeout=Config.PAYMENT_WINDOW_SECONDS,
        )

    async def _launch(self, session_id: str, options: WidgetOptions, callbacks: PaymentCallbacks) -> None:
        pending = PendingPayment(session_id=session_id, options=options, callbacks=callbacks)
        self._pending[options.order_id] = pending
        opening = self._opening.get(session_id)
        if opening is not None and not opening.done():
            opening.set_result(pending)

    async def start(
        self, session_id: str, flow: Awaitable[CheckoutResult]
    ) -> Union[PendingPayment, CheckoutResult]:
        if session_id in self._opening:
            if asyncio.iscoroutine(flow):
                flow.close()
            raise CheckoutInProgressError()

        opening: "asyncio.Future[PendingPayment]" = asyncio.get_running_loop().create_future()
        self._opening[session_id] = opening
        task = asyncio.ensure_future(flow)
        try:
            await asyncio.wait({task, opening}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if self._opening.get(session_id) is opening:
                del self._opening[session_id]

        if opening.done():
            pending = opening.result()
            pending.task = task
            task.add_done_callback(lambda _: self._pending.pop(pending.options.order_id, None))
            return pending

        opening.cancel()
        return task.result()

    def _take(self, session_id: str, gateway_order_id: str) -> PendingPayment:
        pending = self._pending.get(gateway_order_id)
        if pending is None or pending.session_id != session_id or pending.task is None:
            raise PaymentNotFoundError(gateway_order_id)
        return pending

    async def settle_success(self, session_id: str, proof: PaymentVerification) -> CheckoutResult:
        pending = self._take(session_id, proof.razorpay_order_id)
        pending.callbacks.succeed(
            proof.razorpay_order_id, proof.razorpay_payment_id, proof.razorpay_signature
        )
        return await pending.task

    async def settle_failure(self, session_id: str, gateway_order_id: str, description: str) -> CheckoutResult:
        pending = self._take(session_id, gateway_order_id)
        pending.callbacks.fail(description)
        return await pending.task

    async def settle_dismiss(self, session_id: str, gateway_order_id: str) -> CheckoutResult:
        pending = self._take(session_id, gateway_order_id)
        pending.callbacks.dismiss()
        return await pending.task

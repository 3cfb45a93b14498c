from payments.views.ipn import PesapalIPNView
from payments.views.status import PaymentPollView, PaymentStatusView

__all__ = ["PesapalIPNView", "PaymentPollView", "PaymentStatusView"]

from app.models.billing import (  # noqa: F401
    DispatchSource,
    DispatchStatus,
    FailedInvoice,
    InvoiceDispatch,
)
from app.models.catalog import (  # noqa: F401
    DurationUnit,
    Plan,
    Subscription,
    SubscriptionStatus,
)
from app.models.subscriber import BillingAddress, Subscriber  # noqa: F401

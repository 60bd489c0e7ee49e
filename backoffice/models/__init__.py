# Models package — import all models here so Alembic can discover them.

from backoffice.models.user import User  # noqa: F401
from backoffice.models.audit import AuditEvent  # noqa: F401
from backoffice.models.scheduler_request import SchedulerRequest  # noqa: F401
from backoffice.models.tracking_number import TrackingNumber  # noqa: F401
from backoffice.models.referral import (  # noqa: F401
    PendingReferral,
    Referral,
    ReferralCode,
)
from backoffice.models.nurture import (  # noqa: F401
    ReferralNurtureCampaign,
    ReviewEmailTemplate,
)
from backoffice.models.email import (  # noqa: F401
    EmailPreference,
    EmailSendLog,
    EmailSuppression,
)
from backoffice.models.setting import SystemSetting  # noqa: F401
from backoffice.models.voucher import Voucher  # noqa: F401
from backoffice.models.customer_cache import CachedContact, CachedCustomer  # noqa: F401

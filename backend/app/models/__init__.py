# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant create_all et avant que SQLAlchemy résolve les clés étrangères vers users.

from app.models.user import User  # noqa: F401  doit précéder les tables qui y référencent
from app.models.session import AuthSession, PendingTwoFactorSession, TrustedDevice  # noqa: F401
from app.models.token import CsrfToken, VerificationToken  # noqa: F401
from app.models.rate_limit import RateLimitEntry  # noqa: F401

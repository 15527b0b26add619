"""
Shared route helpers: study lookup with access checks and list scoping.
"""

from sqlalchemy.orm import Session

from irb_portal.auth.authorization import get_rbac_authorizer
from irb_portal.core.errors import AuthorizationError, NotFoundError
from irb_portal.database.models import Study, User


def get_study_or_404(db: Session, study_id: str) -> Study:
    study = db.get(Study, study_id)
    if study is None:
        raise NotFoundError("Study")
    return study


def get_visible_study(db: Session, study_id: str, user: User) -> Study:
    """Load a study the user may view. Missing -> 404, hidden -> 403."""
    study = get_study_or_404(db, study_id)
    if not get_rbac_authorizer().can_view_study(user, study):
        raise AuthorizationError("You do not have access to this study")
    return study


def scoped_study_ids(user: User):
    """None for admins (no filter), else a subquery of visible study ids."""
    rbac = get_rbac_authorizer()
    if rbac.is_admin(user):
        return None
    return rbac.visible_study_ids(user)

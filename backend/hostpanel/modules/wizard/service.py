from types import SimpleNamespace

from sqlalchemy.orm import Session

from hostpanel.modules.wizard.models import WizardState


def get_wizard_state(db: Session) -> WizardState:
    state = db.get(WizardState, 1)
    if state is None:
        state = WizardState(id=1)
        db.add(state)
        db.flush()
    return state


def snapshot_state(state: WizardState) -> SimpleNamespace:
    """Plain copy of the row, safe to use after the session is gone (streamed installs)."""
    return SimpleNamespace(**{c.name: getattr(state, c.name) for c in WizardState.__table__.columns})

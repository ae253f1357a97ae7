from sqlalchemy.orm import Session

from hostpanel.core.exceptions import ExternalToolError
from hostpanel.modules.ftp.models import FtpUser
from hostpanel.modules.sites.models import Site
from hostpanel.system import ftp_manager


def sync_ftp(db: Session, cfg):
    """Rewrite the ProFTPD passwd file from every FTP user in the panel (pending changes included)."""
    db.flush()
    rows = (
        db.query(FtpUser, Site)
        .join(Site, FtpUser.site_id == Site.id)
        .order_by(Site.domain, FtpUser.username)
        .all()
    )
    try:
        return ftp_manager.sync_ftp_users(rows, cfg)
    except OSError as e:
        raise ExternalToolError("proftpd passwd", str(e))

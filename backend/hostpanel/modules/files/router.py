import logging
import os
import shutil
from typing import List, Literal

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from hostpanel.core.database import get_db
from hostpanel.core.exceptions import InvalidInput, NotFound
from hostpanel.modules.auth.deps import get_current_user
from hostpanel.modules.sites.service import get_site
from hostpanel.modules.wizard.deps import require_wizard_complete
from hostpanel.system import runner
from hostpanel.system.nginx_manager import atomic_write
from hostpanel.system.paths import resolve_docroot_path

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/sites",
    tags=["File Manager"],
    dependencies=[Depends(get_current_user), Depends(require_wizard_complete)],
)

MAX_EDIT_SIZE = 2 * 1024 * 1024


class FileSave(BaseModel):
    path: str
    content: str


class CreateItemRequest(BaseModel):
    path: str = ""
    name: str
    type: Literal["file", "folder"] = "file"


class RenameItemRequest(BaseModel):
    path: str = ""
    old_name: str
    new_name: str


class BulkRequest(BaseModel):
    paths: List[str]
    destination: str = ""


def _safe_path(db: Session, site_id: int, relative: str):
    """(absolute path, docroot) for a path inside the site; anything that resolves outside is refused."""
    site = get_site(db, site_id)
    root = os.path.realpath(site.docroot)
    target = resolve_docroot_path(root, relative)
    if target is None:
        raise InvalidInput("Path is outside the site folder")
    return target, root


def _check_name(name: str) -> str:
    name = (name or "").strip()
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise InvalidInput("Invalid file name")
    return name


def _is_binary(path: str) -> bool:
    with open(path, "rb") as f:
        return b"\x00" in f.read(8192)


@router.get("/{site_id}/files")
def list_files(site_id: int, path: str = "", db: Session = Depends(get_db)):
    target, _ = _safe_path(db, site_id, path)
    if not os.path.isdir(target):
        return []

    items = []
    with os.scandir(target) as entries:
        for entry in entries:
            try:
                stat = entry.stat(follow_symlinks=False)
            except FileNotFoundError:
                continue
            is_dir = entry.is_dir(follow_symlinks=False)
            items.append({
                "name": entry.name,
                "type": "folder" if is_dir else "file",
                "size": 0 if is_dir else stat.st_size,
                "mtime": stat.st_mtime,
            })

    # folders first
    items.sort(key=lambda x: (x["type"] != "folder", x["name"].lower()))
    return items


@router.get("/{site_id}/files/content")
def read_file(site_id: int, path: str, db: Session = Depends(get_db)):
    target, _ = _safe_path(db, site_id, path)
    if not os.path.isfile(target):
        raise NotFound("File not found")
    if os.path.getsize(target) > MAX_EDIT_SIZE:
        raise InvalidInput("File is too large to edit (max 2 MB)")
    if _is_binary(target):
        raise InvalidInput("Binary file cannot be edited")

    with open(target, "r", encoding="utf-8", errors="replace") as f:
        return {"path": path, "content": f.read()}


@router.post("/{site_id}/files/content")
def save_file(site_id: int, payload: FileSave, db: Session = Depends(get_db)):
    target, root = _safe_path(db, site_id, payload.path)
    if target == root or os.path.isdir(target):
        raise InvalidInput("Not a file")
    if len(payload.content.encode("utf-8")) > MAX_EDIT_SIZE:
        raise InvalidInput("Content is too large (max 2 MB)")

    atomic_write(target, payload.content)
    return {"message": "Saved"}


@router.post("/{site_id}/files/create")
def create_item(site_id: int, payload: CreateItemRequest, db: Session = Depends(get_db)):
    parent, _ = _safe_path(db, site_id, payload.path)
    if not os.path.isdir(parent):
        raise NotFound("Folder not found")
    new_path = os.path.join(parent, _check_name(payload.name))
    if os.path.lexists(new_path):
        raise InvalidInput("File or folder already exists")

    if payload.type == "folder":
        os.makedirs(new_path, mode=0o755)
    else:
        with open(new_path, "w"):
            pass
        os.chmod(new_path, 0o644)
    return {"message": f"{payload.type} created"}


@router.put("/{site_id}/files/rename")
def rename_item(site_id: int, payload: RenameItemRequest, db: Session = Depends(get_db)):
    parent, _ = _safe_path(db, site_id, payload.path)
    old_path = os.path.join(parent, _check_name(payload.old_name))
    new_path = os.path.join(parent, _check_name(payload.new_name))

    if not os.path.lexists(old_path):
        raise NotFound("Item not found")
    if os.path.lexists(new_path):
        raise InvalidInput("New name already taken")

    os.rename(old_path, new_path)
    return {"message": "Renamed"}


@router.post("/{site_id}/files/upload")
def upload_file(site_id: int, path: str = Query(""), file: UploadFile = File(...),
                db: Session = Depends(get_db)):
    target_dir, root = _safe_path(db, site_id, path)
    if not os.path.isdir(target_dir):
        raise NotFound("Folder not found")
    name = _check_name(os.path.basename(file.filename or ""))
    file_path = os.path.join(target_dir, name)
    # open() would follow an existing link
    if os.path.islink(file_path) or resolve_docroot_path(root, os.path.relpath(file_path, root)) is None:
        raise InvalidInput("Upload target is a link or outside the site folder")

    with open(file_path, "wb") as buffer:
        shutil.copyfileobj(file.file, buffer)
    os.chmod(file_path, 0o644)
    return {"message": f"Uploaded {name}"}


@router.get("/{site_id}/files/download")
def download_file(site_id: int, path: str, db: Session = Depends(get_db)):
    target, _ = _safe_path(db, site_id, path)
    if not os.path.isfile(target):
        raise NotFound("File not found")
    return FileResponse(target, filename=os.path.basename(target))


@router.delete("/{site_id}/files")
def delete_item(site_id: int, path: str, db: Session = Depends(get_db)):
    target, root = _safe_path(db, site_id, path)
    if target == root:
        raise InvalidInput("The site folder itself cannot be deleted")
    if not os.path.lexists(target):
        raise NotFound("Item not found")

    _remove(target)
    return {"message": "Deleted"}


def _remove(target: str):
    if os.path.isdir(target) and not os.path.islink(target):
        shutil.rmtree(target)
    else:
        os.remove(target)


def _bulk_sources(root: str, paths: List[str]):
    """Split the requested paths into resolved sources and skipped entries."""
    sources, skipped = [], []
    for relative in paths:
        target = resolve_docroot_path(root, relative)
        if target is None or target == root or not os.path.lexists(target):
            skipped.append(relative)
        else:
            sources.append((relative, target))
    return sources, skipped


def _destination(db: Session, site_id: int, relative: str):
    dest_dir, root = _safe_path(db, site_id, relative)
    if not os.path.isdir(dest_dir):
        raise NotFound("Destination folder not found")
    return dest_dir, root


def _chown(path: str):
    result = runner.try_command(["chown", "-R", "www-data:www-data", path], timeout=120)
    if not result.ok:
        logger.warning("chown %s failed: %s", path, result.output)


@router.post("/{site_id}/files/bulk-delete")
def bulk_delete(site_id: int, payload: BulkRequest, db: Session = Depends(get_db)):
    _, root = _safe_path(db, site_id, "")
    sources, skipped = _bulk_sources(root, payload.paths)
    for _, target in sources:
        _remove(target)
    return {"done": [relative for relative, _ in sources], "skipped": skipped}


def _bulk_transfer(db: Session, site_id: int, payload: BulkRequest, copy: bool):
    dest_dir, root = _destination(db, site_id, payload.destination)
    sources, skipped = _bulk_sources(root, payload.paths)
    done = []
    for relative, source in sources:
        target = os.path.join(dest_dir, os.path.basename(source))
        # existing entries are never overwritten
        if target == source or dest_dir == source or dest_dir.startswith(source + os.sep) \
                or os.path.lexists(target):
            skipped.append(relative)
            continue
        if not copy:
            shutil.move(source, target)
        elif os.path.isdir(source):
            shutil.copytree(source, target, symlinks=True)
        else:
            shutil.copy2(source, target)
        done.append(relative)
    if done:
        _chown(dest_dir)
    return {"done": done, "skipped": skipped}


@router.post("/{site_id}/files/bulk-move")
def bulk_move(site_id: int, payload: BulkRequest, db: Session = Depends(get_db)):
    return _bulk_transfer(db, site_id, payload, copy=False)


@router.post("/{site_id}/files/bulk-copy")
def bulk_copy(site_id: int, payload: BulkRequest, db: Session = Depends(get_db)):
    return _bulk_transfer(db, site_id, payload, copy=True)

import os
import shutil
import typing
import logging
import tempfile
import zipfile
from sdft.error import ArchiveError, InvalidUploadPathError
from sdft.relay.serialization import FILE, DIRECTORY

log = logging.getLogger(__name__)

ARCHIVE_SUFFIX = '.zip'


class StagedUpload(typing.NamedTuple):
    archive: str
    file_name: str
    file_type: str
    file_size: int


def compress(path: str, archive_path: str) -> str:
    """
    Zip a file or a directory tree. Directory members are stored relative to
    the directory itself, empty directories included.
    """
    path = os.path.abspath(path)
    try:
        with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
            if os.path.isdir(path):
                for root, dirs, files in os.walk(path):
                    dirs.sort()
                    relative_root = os.path.relpath(root, path)
                    if relative_root != '.' and not files and not dirs:
                        archive.write(root, relative_root)
                    for name in sorted(files):
                        full_path = os.path.join(root, name)
                        archive.write(full_path, os.path.relpath(full_path, path))
            else:
                archive.write(path, os.path.basename(path))
    except OSError as err:
        raise ArchiveError(archive_path, err.strerror or str(err)) from err
    return archive_path


def stage_upload(path: str, workdir: typing.Optional[str] = None) -> StagedUpload:
    if not path or not os.path.exists(path):
        raise InvalidUploadPathError(path)
    if os.path.isdir(path):
        file_type = DIRECTORY
    elif os.path.isfile(path):
        file_type = FILE
    else:
        raise InvalidUploadPathError(path)
    file_name = os.path.basename(os.path.normpath(os.path.abspath(path)))
    workdir = workdir or tempfile.mkdtemp(prefix='sdft-')
    archive_path = compress(path, os.path.join(workdir, file_name + ARCHIVE_SUFFIX))
    size = os.path.getsize(archive_path)
    log.debug("staged %s '%s' as %s (%i bytes)", file_type, path, archive_path, size)
    return StagedUpload(archive_path, file_name, file_type, size)


def _is_within(directory: str, target: str) -> bool:
    directory = os.path.realpath(directory)
    target = os.path.realpath(target)
    return os.path.commonpath([directory, target]) == directory


def extract(archive_path: str, destination: str) -> str:
    """
    Unpack an archive into destination, refusing members that would land
    outside of it.
    """
    os.makedirs(destination, exist_ok=True)
    try:
        with zipfile.ZipFile(archive_path) as archive:
            for member in archive.infolist():
                if os.path.isabs(member.filename) or \
                        not _is_within(destination, os.path.join(destination, member.filename)):
                    raise ArchiveError(archive_path, f"member '{member.filename}' escapes the destination")
            archive.extractall(destination)
    except zipfile.BadZipFile as err:
        raise ArchiveError(archive_path, str(err)) from err
    except OSError as err:
        raise ArchiveError(archive_path, err.strerror or str(err)) from err
    return destination


def unpack_download(archive_path: str, file_name: str, file_type: str, download_dir: str) -> str:
    """
    Extract a received archive the way it was staged: a directory into its own
    folder, a file next to where the archive was written. The archive is removed.
    """
    if file_type == DIRECTORY:
        destination = os.path.join(download_dir, file_name)
    else:
        destination = download_dir
    try:
        extract(archive_path, destination)
    finally:
        remove_quietly(archive_path)
    if file_type == DIRECTORY:
        return destination
    return os.path.join(destination, file_name)


def remove_quietly(path: str):
    try:
        if os.path.isdir(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as err:
        log.warning("failed to remove %s: %s", path, err)

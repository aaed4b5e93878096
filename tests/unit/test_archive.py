import os
import shutil
import tempfile
import unittest
import zipfile

from sdft.archive import stage_upload, extract, unpack_download
from sdft.error import ArchiveError, InvalidUploadPathError


class TestArchive(unittest.TestCase):

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmp_dir)
        self.workdir = os.path.join(self.tmp_dir, 'work')
        os.makedirs(self.workdir)

    def test_stage_file(self):
        path = os.path.join(self.tmp_dir, 'notes.txt')
        with open(path, 'w') as f:
            f.write('remember the milk')
        staged = stage_upload(path, self.workdir)
        self.assertEqual('notes.txt', staged.file_name)
        self.assertEqual('file', staged.file_type)
        self.assertEqual(os.path.join(self.workdir, 'notes.txt.zip'), staged.archive)
        self.assertEqual(os.path.getsize(staged.archive), staged.file_size)
        with zipfile.ZipFile(staged.archive) as archive:
            self.assertListEqual(['notes.txt'], archive.namelist())

    def test_stage_and_unpack_directory(self):
        source = os.path.join(self.tmp_dir, 'project')
        os.makedirs(os.path.join(source, 'src'))
        os.makedirs(os.path.join(source, 'build'))
        with open(os.path.join(source, 'src', 'main.py'), 'w') as f:
            f.write('print("hi")\n')
        staged = stage_upload(source + os.sep, self.workdir)
        self.assertEqual('project', staged.file_name)
        self.assertEqual('directory', staged.file_type)

        download_dir = os.path.join(self.tmp_dir, 'downloads')
        received = os.path.join(download_dir, 'project.zip')
        os.makedirs(download_dir)
        shutil.copy(staged.archive, received)
        path = unpack_download(received, staged.file_name, staged.file_type, download_dir)
        self.assertEqual(os.path.join(download_dir, 'project'), path)
        with open(os.path.join(path, 'src', 'main.py')) as f:
            self.assertEqual('print("hi")\n', f.read())
        self.assertTrue(os.path.isdir(os.path.join(path, 'build')))
        self.assertFalse(os.path.exists(received))

    def test_invalid_upload_path(self):
        with self.assertRaises(InvalidUploadPathError):
            stage_upload(os.path.join(self.tmp_dir, 'nothing here'), self.workdir)
        with self.assertRaises(InvalidUploadPathError):
            stage_upload('', self.workdir)

    def test_refuses_members_outside_destination(self):
        archive_path = os.path.join(self.tmp_dir, 'evil.zip')
        with zipfile.ZipFile(archive_path, 'w') as archive:
            archive.writestr('../escaped.txt', 'gotcha')
        destination = os.path.join(self.tmp_dir, 'out')
        with self.assertRaisesRegex(ArchiveError, "escapes the destination"):
            extract(archive_path, destination)
        self.assertFalse(os.path.exists(os.path.join(self.tmp_dir, 'escaped.txt')))

    def test_corrupt_archive(self):
        archive_path = os.path.join(self.tmp_dir, 'broken.zip')
        with open(archive_path, 'wb') as f:
            f.write(b'this is not a zip file')
        with self.assertRaises(ArchiveError):
            unpack_download(archive_path, 'broken', 'file', self.tmp_dir)
        self.assertFalse(os.path.exists(archive_path))

import io
import os
import stat
import time
import zipfile

import pytest

from patchmanager.errors import ExternalToolError, PatcherTimeoutError
from patchmanager.patcher import ExternalPatcherTool

posix_only = pytest.mark.skipif(os.name == 'nt', reason='uses /bin/sh stand-in tools')


def _install_script(tool: ExternalPatcherTool, body: str) -> None:
    os.makedirs(tool.tool_dir, exist_ok=True)
    with open(tool.executable, 'w', encoding='utf-8') as fh:
        fh.write('#!/bin/sh\n' + body + '\n')
    os.chmod(tool.executable, os.stat(tool.executable).st_mode | stat.S_IXUSR)


@posix_only
def test_apply_passes_cli_contract_and_cleans_staging(tmp_path):
    tool = ExternalPatcherTool(str(tmp_path / 'launcher'))
    args_file = tmp_path / 'args.txt'
    _install_script(tool, f'printf "%s\\n" "$@" > "{args_file}"\necho patched ok')
    target = tmp_path / 'game'
    target.mkdir()
    patch = tmp_path / 'release_0_1.pwr'
    patch.write_bytes(b'patch')

    tool.apply(str(patch), str(target))

    staging = str(target / 'staging-temp')
    assert args_file.read_text().splitlines() == [
        'apply', '--staging-dir', staging, str(patch), str(target),
    ]
    assert not os.path.exists(staging)
    log = open(tool.diagnostic_log, encoding='utf-8').read()
    assert 'apply --staging-dir' in log
    assert 'exit code 0' in log
    assert 'patched ok' in log


@posix_only
def test_nonzero_exit_reports_stderr(tmp_path):
    tool = ExternalPatcherTool(str(tmp_path / 'launcher'))
    _install_script(tool, 'echo "some output"\necho "signature mismatch" >&2\nexit 3')

    with pytest.raises(ExternalToolError) as exc:
        tool.apply(str(tmp_path / 'p.pwr'), str(tmp_path / 'game'))

    assert exc.value.returncode == 3
    assert 'signature mismatch' in str(exc.value)
    assert 'some output' not in str(exc.value)
    assert 'signature mismatch' in open(tool.diagnostic_log, encoding='utf-8').read()


@posix_only
def test_nonzero_exit_falls_back_to_stdout(tmp_path):
    tool = ExternalPatcherTool(str(tmp_path / 'launcher'))
    _install_script(tool, 'echo "disk full"\nexit 1')

    with pytest.raises(ExternalToolError, match='disk full'):
        tool.apply(str(tmp_path / 'p.pwr'), str(tmp_path / 'game'))


@posix_only
def test_timeout_kills_tool(tmp_path):
    tool = ExternalPatcherTool(str(tmp_path / 'launcher'), timeout=0.5)
    _install_script(tool, 'exec sleep 30')

    with pytest.raises(PatcherTimeoutError):
        tool.apply(str(tmp_path / 'p.pwr'), str(tmp_path / 'game'))

    assert 'timeout' in open(tool.diagnostic_log, encoding='utf-8').read()


@posix_only
def test_timeout_also_kills_spawned_helpers(tmp_path):
    tool = ExternalPatcherTool(str(tmp_path / 'launcher'), timeout=0.5)
    _install_script(tool, 'sleep 30 &\nwait')

    started = time.monotonic()
    with pytest.raises(PatcherTimeoutError):
        tool.apply(str(tmp_path / 'p.pwr'), str(tmp_path / 'game'))

    assert time.monotonic() - started < 10


def test_missing_binary_is_a_launch_failure(tmp_path):
    tool = ExternalPatcherTool(str(tmp_path / 'launcher'))

    with pytest.raises(ExternalToolError, match='Could not start'):
        tool.apply(str(tmp_path / 'p.pwr'), str(tmp_path / 'game'))

    assert 'launch failed' in open(tool.diagnostic_log, encoding='utf-8').read()


class _ZipTransfer:
    def __init__(self, members):
        self.members = members
        self.fetched = []

    def fetch(self, url, dest_path, expected_size=None, progress=None):
        self.fetched.append((url, dest_path))
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, 'w') as zf:
            for name, data in self.members.items():
                zf.writestr(name, data)
        with open(dest_path, 'wb') as fh:
            fh.write(buf.getvalue())
        return dest_path


def test_ensure_installed_is_noop_when_present(tmp_path):
    transfer = _ZipTransfer({})
    tool = ExternalPatcherTool(str(tmp_path), transfer=transfer)
    os.makedirs(tool.tool_dir)
    open(tool.executable, 'w').close()

    assert tool.ensure_installed() == tool.executable
    assert transfer.fetched == []


def test_ensure_installed_downloads_and_extracts(tmp_path):
    tool = ExternalPatcherTool(str(tmp_path), download_url='https://tools.example/butler.zip')
    tool.transfer = _ZipTransfer({os.path.basename(tool.executable): b'#!/bin/sh\n'})
    messages = []

    path = tool.ensure_installed(status=messages.append)

    assert os.path.isfile(path)
    assert tool.transfer.fetched[0][0] == 'https://tools.example/butler.zip'
    assert not os.path.exists(os.path.join(tool.cache_dir, 'butler.zip'))
    assert messages == ['Downloading patch tool...', 'Extracting patch tool...']
    if os.name != 'nt':
        assert os.access(path, os.X_OK)


def test_archive_without_binary_is_rejected(tmp_path):
    tool = ExternalPatcherTool(str(tmp_path), transfer=_ZipTransfer({'README': b'hi'}))

    with pytest.raises(ExternalToolError):
        tool.ensure_installed()

"""
Тесты вызова движка.

Исполняемый файл подменяется shell-скриптом, pytesseract — monkeypatch.
"""

import os
import threading
import time

import pytest
import pytesseract

from ocr_pipeline.errors import (
    EngineExecutionFailed,
    EngineTimeout,
    EngineUnavailable,
    PipelineCancelled,
)
from ocr_pipeline.schemas import OutputFormat
from ocr_pipeline.services.engine import (
    TesseractExecutableBackend,
    TesseractLibraryBackend,
    build_command,
    build_config,
    create_engine_backend,
)

posix_only = pytest.mark.skipif(os.name != "posix", reason="нужен /bin/sh")


# =============================================================================
# Командная строка
# =============================================================================


def test_command_argument_order(tmp_path, engine_request):
    request = engine_request(
        languages=("rus", "eng"),
        page_segmentation_mode=6,
        lexicon_path=tmp_path / "words.user-words",
        page_index=2,
    )

    command = build_command("/usr/bin/tesseract", request)

    assert command == [
        "/usr/bin/tesseract",
        "--tessdata-dir", str(tmp_path / "tess data"),
        str(tmp_path / "in put.png"),
        str(tmp_path / "out" / "page-1"),
        "--psm", "6",
        "--user-words", str(tmp_path / "words.user-words"),
        "--oem", "0",
        "-l", "rus+eng",
        "-c", "tessedit_page_number=2",
        "-c", "tessedit_create_hocr=1",
    ]


def test_plain_text_minimal_command(tmp_path, engine_request):
    request = engine_request(languages=(), output_format=OutputFormat.PLAIN_TEXT)

    command = build_command("tesseract", request)

    assert command == [
        "tesseract",
        "--tessdata-dir", str(tmp_path / "tess data"),
        str(tmp_path / "in put.png"),
        str(tmp_path / "out" / "page-1"),
    ]


def test_windows_paths_quoted(tmp_path, engine_request):
    request = engine_request(lexicon_path=tmp_path / "words.user-words")

    command = build_command(r"C:\Program Files\Tesseract-OCR\tesseract.exe", request, windows=True)

    assert command[0] == '"C:\\Program Files\\Tesseract-OCR\\tesseract.exe"'
    assert command[2] == f'"{tmp_path / "tess data"}"'
    assert command[3] == f'"{tmp_path / "in put.png"}"'
    assert command[4] == f'"{tmp_path / "out" / "page-1"}"'
    assert f'"{tmp_path / "words.user-words"}"' in command
    # Не пути, без кавычек
    assert "-l" in command and "eng" in command


def test_empty_executable_unavailable(engine_request):
    with pytest.raises(EngineUnavailable):
        build_command("", engine_request())


def test_library_config_quotes_paths(tmp_path, engine_request):
    request = engine_request(page_segmentation_mode=7, page_index=1)

    config = build_config(request)

    assert config == (
        f"--tessdata-dir '{tmp_path / 'tess data'}' --psm 7 -c tessedit_page_number=1"
    )


# =============================================================================
# TesseractExecutableBackend
# =============================================================================


@posix_only
def test_executable_success_passes_arguments(tmp_path, engine_request, make_script):
    script = make_script(
        "fake-tesseract",
        'printf \'%s\\n\' "$@" > "$(dirname "$0")/args.txt"\n'
        'printf \'Hello\' > "$4.txt"\n',
    )
    (tmp_path / "out").mkdir()
    request = engine_request(output_format=OutputFormat.PLAIN_TEXT)

    outputs = TesseractExecutableBackend(str(script), windows=False).invoke(request)

    assert outputs == [tmp_path / "out" / "page-1.txt"]
    assert outputs[0].read_text() == "Hello"
    recorded = (tmp_path / "args.txt").read_text().splitlines()
    assert recorded == build_command(str(script), request)[1:]


@posix_only
def test_executable_nonzero_exit(engine_request, make_script):
    script = make_script(
        "fake-tesseract",
        "echo \"Failed loading language 'xxx'\" >&2\nexit 3\n",
    )

    with pytest.raises(EngineExecutionFailed) as exc_info:
        TesseractExecutableBackend(str(script), windows=False).invoke(engine_request())

    assert exc_info.value.returncode == 3
    assert "Failed loading language" in exc_info.value.diagnostics


@posix_only
def test_executable_timeout_kills_process(engine_request, make_script):
    script = make_script("slow-tesseract", "exec sleep 30\n")
    request = engine_request(timeout_seconds=0.5)

    started = time.monotonic()
    with pytest.raises(EngineTimeout) as exc_info:
        TesseractExecutableBackend(str(script), windows=False).invoke(request)

    assert time.monotonic() - started < 10
    assert exc_info.value.timeout_seconds == 0.5


@posix_only
def test_executable_cancel(engine_request, make_script):
    script = make_script("slow-tesseract", "exec sleep 30\n")
    cancel = threading.Event()
    request = engine_request(cancel_event=cancel)

    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(PipelineCancelled):
            TesseractExecutableBackend(str(script), windows=False).invoke(request)
    finally:
        timer.cancel()

    assert time.monotonic() - started < 10


def test_executable_missing(tmp_path, engine_request):
    backend = TesseractExecutableBackend(str(tmp_path / "no-such-tesseract"), windows=False)

    with pytest.raises(EngineUnavailable):
        backend.invoke(engine_request())


@posix_only
def test_executable_not_a_program(tmp_path, engine_request):
    # Исполняемый бит есть, но это не бинарник и не скрипт с shebang
    binary = tmp_path / "broken-tesseract"
    binary.write_bytes(b"\x00\x01\x02 not an executable")
    binary.chmod(0o755)

    with pytest.raises(EngineUnavailable):
        TesseractExecutableBackend(str(binary), windows=False).invoke(engine_request())


# =============================================================================
# TesseractLibraryBackend
# =============================================================================


@pytest.fixture
def library_backend(monkeypatch):
    monkeypatch.setattr(pytesseract.pytesseract, "tesseract_cmd", "tesseract")
    return TesseractLibraryBackend("/opt/tesseract/bin/tesseract", windows=False)


def test_library_sets_command(library_backend):
    assert pytesseract.pytesseract.tesseract_cmd == "/opt/tesseract/bin/tesseract"


def test_library_writes_hocr(tmp_path, engine_request, library_backend, monkeypatch):
    calls = []

    def _fake_hocr(image, lang=None, config="", nice=0, extension="pdf", timeout=0):
        calls.append(dict(image=image, lang=lang, config=config, extension=extension, timeout=timeout))
        return b"<html/>"

    monkeypatch.setattr(pytesseract, "image_to_pdf_or_hocr", _fake_hocr)
    (tmp_path / "out").mkdir()
    request = engine_request(languages=("rus", "eng"), timeout_seconds=12)

    outputs = library_backend.invoke(request)

    assert outputs == [tmp_path / "out" / "page-1.hocr"]
    assert outputs[0].read_bytes() == b"<html/>"
    assert calls[0]["lang"] == "rus+eng"
    assert calls[0]["extension"] == "hocr"
    assert calls[0]["timeout"] == 12
    assert "--tessdata-dir" in calls[0]["config"]


def test_library_plain_text_default_language(tmp_path, engine_request, library_backend, monkeypatch):
    seen = {}

    def _fake_string(image, lang=None, config="", nice=0, output_type="string", timeout=0):
        seen["lang"] = lang
        return "Привет\n"

    monkeypatch.setattr(pytesseract, "image_to_string", _fake_string)
    (tmp_path / "out").mkdir()
    request = engine_request(
        languages=(), default_language="rus", output_format=OutputFormat.PLAIN_TEXT
    )

    outputs = library_backend.invoke(request)

    assert seen["lang"] == "rus"
    assert outputs[0].read_text(encoding="utf-8") == "Привет\n"


@pytest.mark.parametrize(
    "raised, expected",
    [
        (pytesseract.TesseractNotFoundError(), EngineUnavailable),
        (pytesseract.TesseractError(1, "Error opening data file"), EngineExecutionFailed),
        (RuntimeError("Tesseract process timeout"), EngineTimeout),
    ],
)
def test_library_errors_mapped(engine_request, library_backend, monkeypatch, raised, expected):
    def _fail(*args, **kwargs):
        raise raised

    monkeypatch.setattr(pytesseract, "image_to_pdf_or_hocr", _fail)

    with pytest.raises(expected):
        library_backend.invoke(engine_request())


def test_library_cancelled_before_call(engine_request, library_backend):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(PipelineCancelled):
        library_backend.invoke(engine_request(cancel_event=cancel))


# =============================================================================
# Выбор бэкенда
# =============================================================================


def test_create_backend_by_name(monkeypatch):
    monkeypatch.setattr(pytesseract.pytesseract, "tesseract_cmd", "tesseract")

    assert isinstance(create_engine_backend("executable", "tesseract"), TesseractExecutableBackend)
    assert isinstance(create_engine_backend("library", "tesseract"), TesseractLibraryBackend)

    with pytest.raises(ValueError):
        create_engine_backend("cloud", "tesseract")

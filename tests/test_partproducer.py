import io
import os
import queue
import threading

from tusstore.partproducer import PartProducer, cleanup_temp_file


class InfiniteZeroReader:
    def read(self, size=-1):
        return b"\x00"


class ErrorReader:
    def read(self, size=-1):
        raise OSError("error from ErrorReader")


def start(producer, part_size):
    thread = threading.Thread(target=producer.produce, args=(part_size,), daemon=True)
    thread.start()
    return thread


def drain_until_end(files):
    """Read from the queue until the end marker; fail after 100 items."""
    for _ in range(100):
        item = files.get(timeout=2)
        if item is None:
            return True
        cleanup_temp_file(item)
    return False


def test_consumes_entire_reader_without_error(tmp_path):
    files = queue.Queue(maxsize=1)
    done = threading.Event()
    producer = PartProducer(io.BytesIO(b"test"), files, done, str(tmp_path))
    thread = start(producer, 1)

    actual = b""
    while (file := files.get(timeout=2)) is not None:
        data = file.read(1)
        assert len(data) == 1
        actual += data
        cleanup_temp_file(file)

    thread.join(timeout=2)
    assert actual == b"test"
    assert producer.error is None
    assert list(tmp_path.iterdir()) == []


def test_exits_when_done_is_set(tmp_path):
    files = queue.Queue(maxsize=1)
    done = threading.Event()
    producer = PartProducer(InfiniteZeroReader(), files, done, str(tmp_path))
    thread = start(producer, 10)

    done.set()
    assert drain_until_end(files)
    thread.join(timeout=2)
    assert not thread.is_alive()
    assert producer.error is None


def test_exits_when_done_is_set_before_any_part(tmp_path):
    files = queue.Queue(maxsize=1)
    done = threading.Event()
    producer = PartProducer(InfiniteZeroReader(), files, done, str(tmp_path))
    done.set()
    thread = start(producer, 10)

    assert drain_until_end(files)
    thread.join(timeout=2)
    assert not thread.is_alive()
    assert list(tmp_path.iterdir()) == []


def test_exits_when_unable_to_read(tmp_path):
    files = queue.Queue(maxsize=1)
    done = threading.Event()
    producer = PartProducer(ErrorReader(), files, done, str(tmp_path))
    thread = start(producer, 10)

    assert drain_until_end(files)
    thread.join(timeout=2)
    assert not thread.is_alive()
    assert isinstance(producer.error, OSError)
    assert str(producer.error) == "error from ErrorReader"
    assert list(tmp_path.iterdir()) == []


def test_parts_have_requested_size(tmp_path):
    files = queue.Queue()
    done = threading.Event()
    producer = PartProducer(io.BytesIO(b"1234567890ABCD"), files, done, str(tmp_path))
    producer.produce(4)

    parts = []
    while (file := files.get_nowait()) is not None:
        parts.append(file.read())
        cleanup_temp_file(file)
    assert parts == [b"1234", b"5678", b"90AB", b"CD"]


def test_next_part_returns_file_at_start(tmp_path):
    producer = PartProducer(io.BytesIO(b"hello world"), queue.Queue(), threading.Event(), str(tmp_path))
    file = producer.next_part(5)
    assert os.path.basename(file.name).startswith("tusd-s3-tmp-")
    assert os.path.dirname(file.name) == str(tmp_path)
    assert file.read() == b"hello"
    cleanup_temp_file(file)


def test_next_part_returns_none_at_end(tmp_path):
    producer = PartProducer(io.BytesIO(b""), queue.Queue(), threading.Event(), str(tmp_path))
    assert producer.next_part(5) is None
    assert list(tmp_path.iterdir()) == []


def test_cleanup_temp_file_removes_file(tmp_path):
    producer = PartProducer(io.BytesIO(b"abc"), queue.Queue(), threading.Event(), str(tmp_path))
    file = producer.next_part(10)
    assert os.path.exists(file.name)
    cleanup_temp_file(file)
    assert not os.path.exists(file.name)
    assert file.closed
    cleanup_temp_file(file)
    assert list(tmp_path.iterdir()) == []
import threading

from retryctl import JobBuffer


def test_add_values_and_last_value():
    buf = JobBuffer()
    assert buf.last_value is None
    buf.add("a")
    buf.add("b")
    assert buf.values == ["a", "b"]
    assert buf.last_value == "b"
    assert len(buf) == 2
    buf.clear()
    assert buf.values == []


def test_values_is_a_snapshot():
    buf = JobBuffer()
    buf.add("a")
    snapshot = buf.values
    snapshot.append("b")
    assert buf.values == ["a"]


def test_concurrent_appends_keep_per_thread_order():
    buf = JobBuffer()
    threads = [
        threading.Thread(target=lambda n=n: [buf.add(f"{n}:{i}") for i in range(200)])
        for n in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    values = buf.values
    assert len(values) == 8 * 200
    for n in range(8):
        mine = [int(v.split(":")[1]) for v in values if v.startswith(f"{n}:")]
        assert mine == list(range(200))

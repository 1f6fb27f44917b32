import threading

from amssdk.locking import Locker


def test_second_try_lock_fails():
    locker = Locker()
    assert locker.try_lock() is True
    assert locker.try_lock() is False


def test_unlock_makes_lock_available():
    locker = Locker()
    assert locker.try_lock() is True
    locker.unlock()
    assert locker.try_lock() is True


def test_unlock_when_free_is_harmless():
    locker = Locker()
    locker.unlock()
    assert locker.try_lock() is True


def test_only_one_thread_wins():
    locker = Locker()
    count = 16
    barrier = threading.Barrier(count)
    results = []
    results_lock = threading.Lock()

    def worker():
        barrier.wait()
        won = locker.try_lock()
        with results_lock:
            results.append(won)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(results) == count
    assert results.count(True) == 1
    assert locker.try_lock() is False
    locker.unlock()
    assert locker.try_lock() is True
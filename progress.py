import threading


class RefreshProgress:
    """Task counter the host UI polls or subscribes to during a refresh."""

    def __init__(self, listener=None):
        self.lock = threading.Lock()
        self.number_of_tasks = 0
        self.number_remaining = 0
        self.listener = listener

    def add_to_number_of_tasks_and_remaining(self, count):
        with self.lock:
            self.number_of_tasks += count
            self.number_remaining += count
        self._notify()

    def complete_task(self):
        with self.lock:
            if self.number_remaining > 0:
                self.number_remaining -= 1
            if self.number_remaining == 0:
                self.number_of_tasks = 0
        self._notify()

    def clear(self):
        with self.lock:
            self.number_of_tasks = 0
            self.number_remaining = 0
        self._notify()

    @property
    def is_complete(self):
        return self.number_remaining == 0

    def _notify(self):
        if self.listener is not None:
            self.listener(self.number_of_tasks, self.number_remaining)

import sys
import typing

from tqdm import tqdm


class ProgressHandle:

    def update(self, n: int):
        pass

    def close(self):
        pass


class Console:
    """
    Everything a transfer wants to tell the person running it goes through here.
    """

    def status(self, line: str):
        pass

    def error(self, line: str):
        pass

    def progress(self, description: str, total: typing.Optional[int] = None) -> ProgressHandle:
        return ProgressHandle()


class Silent(Console):
    pass


class Basic(Console):

    def __init__(self, stdout=None, stderr=None):
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr

    def status(self, line: str):
        print(line, file=self.stdout, flush=True)

    def error(self, line: str):
        print(line, file=self.stderr, flush=True)


class Bar(ProgressHandle):

    def __init__(self, bar: tqdm):
        self.bar = bar

    def update(self, n: int):
        self.bar.update(n)

    def close(self):
        self.bar.close()


class Progress(Basic):

    def progress(self, description: str, total: typing.Optional[int] = None) -> ProgressHandle:
        return Bar(tqdm(
            desc=description, total=total, unit='B', unit_scale=True, unit_divisor=1024,
            file=self.stderr, leave=True
        ))

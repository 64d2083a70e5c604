"""
Build-time values for the showcase package.

Every function below is a macro: it runs once while the module is built and
each call is replaced by the value it returned.  None of them exist in the
built module.
"""

import datetime


def version():
    "use macro"
    return require("version.toml")["project"]["version"]


def compiled_at():
    "use macro"
    return now()


async def message():
    "use macro"
    import aiofiles

    async with aiofiles.open(here / "message.txt", encoding="utf-8") as fh:
        text = await fh.read()
    log("Read %d characters from message.txt", len(text))
    return text.strip()


url = lambda: ("use macro", [
    URL("https://example.com/?foo=bar&baz=qux"),
    QueryParams("foo=bar&baz=qux"),
])

form_data = lambda: ("use macro", FormData([("foo", "bar"), ("baz", "qux")]))


VERSION = version()
COMPILED_AT = compiled_at()
MESSAGE = message()
URL_PARTS = url()
FORM_DATA = form_data()


def age() -> datetime.timedelta:
    return datetime.datetime.now(datetime.timezone.utc) - COMPILED_AT


async def greeting() -> str:
    return f"{await MESSAGE} (version {VERSION})"

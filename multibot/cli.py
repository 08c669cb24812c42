"""multibot CLI."""

import asyncio
import sys

import click

from multibot import __version__
from multibot.domain.errors import MultibotError


def _log(msg: str):
    print(msg, file=sys.stderr)


@click.group()
@click.version_option(version=__version__, prog_name="multibot")
def cli():
    """Chat bot for Discord, Slack, Telegram, Mattermost and IRC."""


@cli.command()
def serve():
    """Connect every configured platform and answer messages until CTRL-C."""
    from multibot.launcher import serve as run_serve
    asyncio.run(run_serve())


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def sendmsg(args):
    """Send a message to channel as bot, outside of the event loop.

    \b
    Params are platform, channel and message, e.g.
      multibot sendmsg discord general "Hello Discord!"
      multibot sendmsg all announcements Message to all platforms
    """
    if len(args) < 3:
        _log("Not enough params")
        return
    platform, channel = args[0], args[1]
    message = " ".join(args[2:])

    from multibot.launcher import send_message
    try:
        asyncio.run(send_message(platform, channel, message))
    except (MultibotError, ValueError) as e:
        _log(str(e))
        sys.exit(1)

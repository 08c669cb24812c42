"""Launcher — builds the configured platforms and runs them."""

import asyncio
import signal
import sys
from typing import Iterable, Optional

from multibot.config import AppConfig, SUPPORTED_PLATFORMS
from multibot.commands import register_builtin
from multibot.domain.dispatcher import Dispatcher, build_dispatcher
from multibot.domain.errors import MultibotError
from multibot.domain.handlers import HandlerRegistry
from multibot.domain.registry import PlatformRegistry

# Platforms that sendmsg only sends through; the others get a receive loop.
PASSIVE_FOR_SENDMSG = ("discord", "slack")


def _log(msg: str):
    print(msg, file=sys.stderr)


async def connect_platform(name: str, config: AppConfig, dispatcher: Optional[Dispatcher] = None):
    """Create and authenticate the adapter for ``name``.

    Returns None when the platform is not configured. Raises PlatformError
    subclasses when it is configured but cannot connect.
    """
    backoff = config.dispatch.backoff
    timeout = config.dispatch.http_timeout

    if name == "discord" and config.discord.is_configured:
        from multibot.adapters.discord import DiscordMessagePlatform
        return await DiscordMessagePlatform.create(
            config.discord.token,
            dispatcher=dispatcher,
            default_channel=config.discord.default_channel,
            backoff=backoff,
        )

    if name == "slack" and config.slack.is_configured:
        for warning in config.slack.token_warnings():
            _log(warning)
        from multibot.adapters.slack import SlackMessagePlatform
        return await SlackMessagePlatform.create(
            config.slack.bot_token,
            config.slack.app_token,
            dispatcher=dispatcher,
            default_channel=config.slack.default_channel,
            backoff=backoff,
            timeout=timeout,
        )

    if name == "telegram" and config.telegram.is_configured:
        from multibot.adapters.telegram import TelegramMessagePlatform
        return await TelegramMessagePlatform.create(
            config.telegram.token,
            dispatcher=dispatcher,
            default_channel=config.telegram.default_channel,
            backoff=backoff,
            timeout=timeout,
        )

    if name == "mattermost" and config.mattermost.is_configured:
        from multibot.adapters.mattermost import MattermostMessagePlatform
        return await MattermostMessagePlatform.create(
            config.mattermost.token,
            config.mattermost.url,
            dispatcher=dispatcher,
            default_channel=config.mattermost.default_channel,
            backoff=backoff,
            timeout=timeout,
        )

    if name == "irc" and config.irc.is_configured:
        from multibot.adapters.irc import IrcMessagePlatform
        return await IrcMessagePlatform.create(
            config.irc,
            dispatcher=dispatcher,
            backoff=backoff,
            timeout=timeout,
        )

    return None


def _selected(platform: str) -> Iterable[str]:
    if platform == "all":
        return SUPPORTED_PLATFORMS
    if platform not in SUPPORTED_PLATFORMS:
        raise ValueError(
            f"unknown platform {platform!r}; expected one of {', '.join(SUPPORTED_PLATFORMS)}, all"
        )
    return (platform,)


def _install_signal_handlers(stop: asyncio.Event) -> list:
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler
            continue
        installed.append(sig)
    return installed


async def serve(config: Optional[AppConfig] = None, handlers: Optional[HandlerRegistry] = None):
    """Connect every configured platform and run until SIGINT/SIGTERM.

    Without ``handlers`` the built-in commands are served. A caller-supplied
    registry is used as given.
    """
    config = config or AppConfig.from_env()
    if handlers is None:
        handlers = register_builtin(HandlerRegistry(), timeout=config.dispatch.http_timeout)
    handlers.freeze()
    dispatcher = build_dispatcher(handlers, config.dispatch)

    registry = PlatformRegistry()
    for name in config.configured_platforms():
        try:
            platform = await connect_platform(name, config, dispatcher)
        except MultibotError as e:
            _log(f"Skipping {name}: {e}")
            continue
        if platform is not None:
            registry.register(platform)
            _log(f"{name} bot is now running.")

    if not len(registry):
        _log("No platforms configured. Set DISCORDTOKEN, SLACK_*_TOKEN, TELEGRAM_BOT_TOKEN, MATTERMOST_* or IRC_CONN.")
        return registry

    stop = asyncio.Event()
    signals = _install_signal_handlers(stop)
    await registry.start()
    _log("Bot is now running. Press CTRL-C to exit.")

    stopper = asyncio.create_task(stop.wait())
    loops = asyncio.create_task(registry.wait())
    try:
        await asyncio.wait({stopper, loops}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()
        for sig in signals:
            asyncio.get_running_loop().remove_signal_handler(sig)
        _log("Shutting down...")
        await registry.close_all()
        loops.cancel()
    return registry


async def send_message(platform: str, channel: str, message: str, config: Optional[AppConfig] = None) -> bool:
    """One-shot send outside of ``serve``. Returns True when the send succeeded.

    Construction errors propagate; a failed send is logged.
    """
    config = config or AppConfig.from_env()
    names = _selected(platform)
    registry = PlatformRegistry()
    try:
        for name in names:
            adapter = await connect_platform(name, config)
            if adapter is None:
                continue
            if name in PASSIVE_FOR_SENDMSG:
                registry.register_passive(adapter)
            else:
                registry.register(adapter)
                _log(f"{name} bot is now running.")
        await registry.start()

        try:
            await registry.channel_message_send(channel, message)
        except Exception as e:
            _log(str(e))
            return False
        return True
    finally:
        await registry.close_all()

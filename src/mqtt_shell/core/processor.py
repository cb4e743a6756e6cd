"""Subscription processor: built-in commands and per-topic message handling."""

from __future__ import annotations

import os
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import StrEnum
from typing import BinaryIO

from loguru import logger

from mqtt_shell.broker import BrokerProtocol, MessageHandler
from mqtt_shell.core.commands import (
    PUB_USAGE,
    SUB_USAGE,
    UNSUB_USAGE,
    BuiltinCommand,
    parse_publish_args,
    parse_subscribe_args,
)
from mqtt_shell.core.decorators import Decorator, DecoratorPool, decorate, serialize
from mqtt_shell.core.help import HELP_TEXT
from mqtt_shell.core.interpreter import Chain, interpret_line
from mqtt_shell.core.pipeline import Pipeline, build_pipeline
from mqtt_shell.core.writers import PrefixWriter, TextOutput
from mqtt_shell.errors import BrokerError, CommandError, PipelineError, ShellError

DEFAULT_MAX_WORKERS = 32
DEFAULT_DRAIN_TIMEOUT_SECONDS = 30.0


class SubscriptionMode(StrEnum):
    PLAIN = "plain"
    SHORT_TERM = "short-term"
    LONG_TERM = "long-term"


@dataclass(frozen=True)
class Subscription:
    """One active subscription and the handler installed for it."""

    topic: str
    qos: int
    handler: MessageHandler
    mode: SubscriptionMode
    decorator: Decorator | None = None


@dataclass
class LongTermHandle:
    """Input pipe of a pipeline that runs in the background for a whole subscription."""

    writer: BinaryIO
    done: threading.Event = field(default_factory=threading.Event)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def closed(self) -> bool:
        return self.writer.closed

    def feed(self, topic: str, payload: bytes) -> None:
        with self._lock:
            try:
                self.writer.write(payload + b"\n")
            except (ValueError, OSError) as exc:
                logger.debug("dropped message on {}: {}", topic, exc)

    def close(self) -> None:
        with self._lock:
            if self.writer.closed:
                return
            try:
                self.writer.close()
            except BrokenPipeError:
                pass


class Processor:
    """Interprets shell lines and manages subscriptions against a broker."""

    def __init__(
        self,
        out: TextOutput,
        broker: BrokerProtocol,
        decorators: DecoratorPool | None = None,
        *,
        publish_qos: int = 0,
        subscribe_qos: int = 0,
        max_workers: int = DEFAULT_MAX_WORKERS,
        drain_timeout_seconds: float = DEFAULT_DRAIN_TIMEOUT_SECONDS,
    ) -> None:
        self.out = out
        self.broker = broker
        self.decorators = decorators if decorators is not None else DecoratorPool()
        self.publish_qos = publish_qos
        self.subscribe_qos = subscribe_qos
        self.drain_timeout_seconds = drain_timeout_seconds
        self._subscriptions: dict[str, Subscription] = {}
        self._long_term: dict[str, LongTermHandle] = {}
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pipeline")
        self._handlers: dict[BuiltinCommand, Callable[[Chain], None]] = {
            BuiltinCommand.PUB: self._handle_pub,
            BuiltinCommand.SUB: self._handle_sub,
            BuiltinCommand.UNSUB: self._handle_unsub,
            BuiltinCommand.LIST: self._handle_list,
            BuiltinCommand.HELP: self._handle_help,
            BuiltinCommand.LIST_COLORS: self._handle_list_colors,
        }

    # ------------------------------------------------------------------
    # Command loop
    # ------------------------------------------------------------------
    def process(self, lines: Iterable[str]) -> None:
        """Handle every line; close all long-term pipelines once the input ends."""
        try:
            for line in lines:
                self.handle_line(line)
        finally:
            self.close()

    def handle_line(self, line: str) -> None:
        try:
            self.handle_chain(interpret_line(line))
        except ShellError as exc:
            self._write(f"{exc}\n")
        except Exception as exc:
            logger.exception("unexpected error while handling {!r}", line)
            self._write(f"{exc}\n")

    def handle_chain(self, chain: Chain) -> None:
        if not chain.commands:
            return
        name = chain.commands[0].name
        try:
            handler = self._handlers[BuiltinCommand(name)]
        except (ValueError, KeyError):
            raise CommandError("unknown command") from None
        with self._lock:
            handler(chain)

    def close(self) -> None:
        """Close every long-term sink and wait until their pipelines wrote their last output."""
        with self._lock:
            handles = list(self._long_term.items())
            self._long_term.clear()
        for _topic, handle in handles:
            handle.close()
        for topic, handle in handles:
            if not handle.done.wait(self.drain_timeout_seconds):
                logger.warning("long-term pipeline of {} did not exit after its input was closed", topic)
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Subscription state
    # ------------------------------------------------------------------
    def subscriptions(self) -> list[str]:
        with self._lock:
            return sorted(self._subscriptions)

    def has_subscriptions(self) -> bool:
        with self._lock:
            return bool(self._subscriptions)

    def long_term_handle(self, topic: str) -> LongTermHandle | None:
        with self._lock:
            return self._long_term.get(topic)

    def on_reconnect(self) -> None:
        """Re-install every subscription with the handler it was created with."""
        with self._lock:
            for subscription in list(self._subscriptions.values()):
                try:
                    self.broker.subscribe(subscription.topic, subscription.qos, subscription.handler)
                except BrokerError as exc:
                    logger.warning("re-subscribe of {} failed: {}", subscription.topic, exc)
                    self._write(f"unable to re-subscribe {subscription.topic}: {exc}\n")

    # ------------------------------------------------------------------
    # Built-in commands
    # ------------------------------------------------------------------
    def _handle_pub(self, chain: Chain) -> None:
        args = parse_publish_args(chain.commands[0].arguments, self.publish_qos)
        try:
            self.broker.publish(args.topic, args.qos, args.retained, args.payload)
        except BrokerError as exc:
            raise CommandError(str(exc), PUB_USAGE) from exc

    def _handle_sub(self, chain: Chain) -> None:
        args = parse_subscribe_args(chain.commands[0].arguments, self.subscribe_qos)
        for topic in args.topics:
            try:
                subscription = self._create_subscription(topic, args.qos, chain)
            except PipelineError as exc:
                raise CommandError(str(exc), SUB_USAGE) from exc
            try:
                self.broker.subscribe(topic, args.qos, subscription.handler)
            except BrokerError as exc:
                self._discard_long_term(topic, subscription)
                raise CommandError(str(exc), SUB_USAGE) from exc
            if subscription.mode is not SubscriptionMode.LONG_TERM:
                # the replaced handler was the only writer of a previous background pipeline
                self._discard_long_term(topic)
            self._subscriptions[topic] = subscription
            logger.debug("subscription {} ({}) created", topic, subscription.mode)

    def _handle_unsub(self, chain: Chain) -> None:
        topics = chain.commands[0].arguments
        if not topics:
            raise CommandError("invalid arguments", UNSUB_USAGE)
        for topic in topics:
            handle = self._long_term.pop(topic, None)
            if handle is not None:
                # end of input lets the background pipeline exit
                handle.close()
            self.broker.unsubscribe(topic)
            self._subscriptions.pop(topic, None)

    def _handle_list(self, _chain: Chain) -> None:
        for topic in sorted(self._subscriptions):
            self._write(f"{topic}\n")

    def _handle_help(self, _chain: Chain) -> None:
        self._write(HELP_TEXT)

    def _handle_list_colors(self, _chain: Chain) -> None:
        for decorator in self.decorators.entries():
            self._write(decorate(serialize(decorator), *decorator) + "\n")

    # ------------------------------------------------------------------
    # Message handlers
    # ------------------------------------------------------------------
    def _create_subscription(self, topic: str, qos: int, chain: Chain) -> Subscription:
        if len(chain.commands) == 1:
            decorator = self.decorators.next_decorator()
            return Subscription(topic, qos, self._plain_handler(decorator), SubscriptionMode.PLAIN, decorator)
        if chain.is_long_term and chain.is_appending:
            return Subscription(topic, qos, self._long_term_handler(topic, chain), SubscriptionMode.LONG_TERM)
        decorator = self.decorators.next_decorator()
        return Subscription(topic, qos, self._short_term_handler(chain, decorator), SubscriptionMode.SHORT_TERM, decorator)

    def _plain_handler(self, decorator: Decorator | None) -> MessageHandler:
        codes = decorator or ()

        def handle(topic: str, payload: bytes) -> None:
            text = payload.decode("utf-8", errors="replace")
            self._write(f"{decorate(topic, *codes)} {text}\n")

        return handle

    def _long_term_handler(self, topic: str, chain: Chain) -> MessageHandler:
        previous = self._long_term.pop(topic, None)
        if previous is not None:
            previous.close()

        read_fd, write_fd = os.pipe()
        reader = os.fdopen(read_fd, "rb")
        writer = os.fdopen(write_fd, "wb", buffering=0)
        try:
            pipeline, cleanup = build_pipeline(chain, reader)
        except PipelineError:
            reader.close()
            writer.close()
            raise

        handle = LongTermHandle(writer)
        self._long_term[topic] = handle
        thread = threading.Thread(
            target=self._run_long_term,
            args=(topic, pipeline, reader, cleanup, handle),
            name=f"long-term:{topic}",
            daemon=True,
        )
        thread.start()
        return handle.feed

    def _run_long_term(
        self,
        topic: str,
        pipeline: Pipeline,
        reader: BinaryIO,
        cleanup: Callable[[], None],
        handle: LongTermHandle,
    ) -> None:
        try:
            pipeline.run()
        except PipelineError as exc:
            logger.warning("long-term pipeline of {} failed: {}", topic, exc)
            self._write(f"{topic} {exc}\n")
        finally:
            reader.close()
            cleanup()
            handle.done.set()
            logger.debug("long-term pipeline of {} exited", topic)

    def _short_term_handler(self, chain: Chain, decorator: Decorator | None) -> MessageHandler:
        codes = decorator or ()

        def handle(topic: str, payload: bytes) -> None:
            prefix = f"{decorate(topic, *codes)} "
            try:
                future = self._executor.submit(self._run_short_term, chain, payload, prefix)
            except RuntimeError:
                logger.debug("shell is shutting down, message on {} dropped", topic)
                return
            # the broker must not deliver the next message before this pipeline finished
            future.result()

        return handle

    def _run_short_term(self, chain: Chain, payload: bytes, prefix: str) -> None:
        sinks = [] if chain.is_appending else [PrefixWriter(prefix, self.out)]
        try:
            pipeline, cleanup = build_pipeline(chain, payload, *sinks)
        except PipelineError as exc:
            self._write(f"{prefix}{exc}\n")
            return
        try:
            pipeline.run()
        except PipelineError as exc:
            self._write(f"{prefix}{exc}\n")
        finally:
            cleanup()

    def _discard_long_term(self, topic: str, subscription: Subscription | None = None) -> None:
        if subscription is not None and subscription.mode is not SubscriptionMode.LONG_TERM:
            return
        handle = self._long_term.pop(topic, None)
        if handle is not None:
            handle.close()

    def _write(self, text: str) -> None:
        self.out.write(text)

"""Application bootstrap and the backfill run.

Wires the chain, identity, annotation and delivery modules together and
drives one backfill:

    replay -> (resolve identities || gather annotations) -> compose
           -> preview -> [dry run | confirm] -> deliver -> summary
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import AsyncExitStack, asynccontextmanager

import click

from .annotations.aggregator import AnnotationAggregator
from .chain.event_source import EventSource
from .chain.rpc import JsonRpcClient
from .core.config import Settings
from .core.enums import RunStatus
from .core.interfaces import IAnnotationAggregator, IEventSource, IIdentityResolver
from .core.models import BackfillOutcome, ComposedMessage
from .delivery.composer import LinkTemplate, compose_messages
from .delivery.pipeline import DeliveryPipeline
from .delivery.sink import DiscordChannelSink
from .identity.directory import DiscordMemberDirectory
from .identity.resolver import IdentityResolver
from .identity.wallets import CardAddressDeriver
from .observability.logger import bind_run_context, clear_run_context, get_logger

logger = get_logger(__name__)

_RULE = "═" * 60


def ask_confirmation(prompt: str) -> bool:
    """Interactive gate: only ``yes``/``y`` proceed."""
    answer = click.prompt(prompt, default="", show_default=False, prompt_suffix=" ")
    return answer.strip().lower() in ("yes", "y")


class BackfillPipeline:
    """One backfill run over explicitly injected collaborators."""

    def __init__(
        self,
        settings: Settings,
        *,
        event_source: IEventSource,
        resolver: IIdentityResolver,
        aggregator: IAnnotationAggregator,
        delivery: DeliveryPipeline,
        confirm: Callable[[str], bool] = ask_confirmation,
        echo: Callable[..., None] = click.echo,
    ) -> None:
        self._settings = settings
        self._event_source = event_source
        self._resolver = resolver
        self._aggregator = aggregator
        self._delivery = delivery
        self._confirm = confirm
        self._echo = echo
        self._links = LinkTemplate(
            symbol=settings.token.symbol,
            token_url=settings.token_url,
            tx_url_base=f"{settings.chain.explorer_url}/tx",
        )

    async def run(
        self,
        after_tx: str,
        *,
        dry_run: bool = False,
        skip_confirm: bool = False,
    ) -> BackfillOutcome:
        echo = self._echo
        log = logger.bind(after_tx=after_tx, dry_run=dry_run)

        # 1. Replay transfers
        echo("📡 Fetching on-chain transfers...")
        events = await self._event_source.replay(after_tx)
        echo(f"   Found {len(events)} transfers\n")
        log.info("events_replayed", count=len(events))
        if not events:
            echo("Nothing to post.")
            return BackfillOutcome(status=RunStatus.NOTHING_TO_POST)

        # 2. Annotations in the background while identities resolve
        tx_ids = list(dict.fromkeys(event.tx_id for event in events))
        annotation_task = asyncio.create_task(
            self._aggregator.gather(tx_ids), name="annotations"
        )
        try:
            addresses = {event.subject_address.lower() for event in events}
            echo("👥 Resolving wallet addresses to Discord users...")
            identities = await self._resolver.resolve(addresses)
            echo(f"   Resolved {len(identities)}/{len(addresses)} addresses\n")
            log.info("identities_resolved", resolved=len(identities), targets=len(addresses))

            echo("📝 Fetching Nostr annotations...")
            annotations = await annotation_task
        finally:
            if not annotation_task.done():
                annotation_task.cancel()
                await asyncio.gather(annotation_task, return_exceptions=True)
        echo(f"   Found {len(annotations)} annotations\n")
        log.info("annotations_gathered", count=len(annotations))

        # 3. Compose + preview
        messages = compose_messages(events, identities, annotations, self._links)
        self._preview(messages)

        outcome = BackfillOutcome(
            status=RunStatus.DRY_RUN,
            events=events,
            identities=dict(identities),
            annotations=dict(annotations),
            messages=messages,
        )
        if dry_run:
            echo("\n🏁 Dry run complete. No messages posted.")
            return outcome

        # 4. Confirm + deliver
        channel_id = self._settings.discord.channel_id
        prompt = f"\nPost {len(messages)} messages to channel {channel_id}? (yes/no)"
        if not skip_confirm and not await asyncio.to_thread(self._confirm, prompt):
            echo("Aborted.")
            return outcome.model_copy(update={"status": RunStatus.DECLINED})

        echo("\n🚀 Posting messages...")
        results = await self._delivery.deliver(messages)
        outcome = outcome.model_copy(
            update={"status": RunStatus.DELIVERED, "results": results}
        )
        echo(
            f"\n🏁 Done! {outcome.delivered}/{len(messages)} posted"
            f"{f', {outcome.failed} failed' if outcome.failed else ''}."
        )
        log.info("delivery_finished", delivered=outcome.delivered, failed=outcome.failed)
        return outcome

    def _preview(self, messages: Sequence[ComposedMessage]) -> None:
        echo = self._echo
        echo(_RULE)
        echo(f"📋 {len(messages)} messages to post to #{self._settings.discord.channel_name}")
        echo(_RULE)
        for message in messages:
            echo(f"\n{message.ordinal + 1}. {message.text}")
        echo("\n" + _RULE)


@asynccontextmanager
async def open_pipeline(
    settings: Settings,
    *,
    confirm: Callable[[str], bool] = ask_confirmation,
) -> AsyncIterator[BackfillPipeline]:
    """Build a pipeline over live clients; closes them on exit."""
    async with AsyncExitStack() as stack:
        rpc = await stack.enter_async_context(
            JsonRpcClient(
                settings.chain.rpc_url,
                timeout=settings.chain.timeout,
                max_retries=settings.chain.max_retries,
                base_backoff=settings.chain.base_backoff,
            )
        )
        directory = await stack.enter_async_context(
            DiscordMemberDirectory(
                settings.discord.api_base,
                settings.discord.bot_token,
                settings.discord.guild_id,
                page_size=settings.identity.page_size,
                timeout=settings.discord.timeout,
            )
        )
        sink = await stack.enter_async_context(
            DiscordChannelSink(
                settings.discord.api_base,
                settings.discord.bot_token,
                settings.discord.channel_id,
                max_rate_limit_retries=settings.delivery.max_rate_limit_retries,
                timeout=settings.discord.timeout,
            )
        )

        yield BackfillPipeline(
            settings,
            event_source=EventSource(
                rpc,
                settings.token,
                block_lookup_concurrency=settings.chain.block_lookup_concurrency,
            ),
            resolver=IdentityResolver(
                directory,
                CardAddressDeriver(
                    rpc,
                    settings.identity.card_manager_address,
                    settings.identity.instance_id,
                ),
            ),
            aggregator=AnnotationAggregator(
                settings.annotations.relays,
                settings.chain.chain_id,
                timeout=settings.annotations.timeout_seconds,
                connection_timeout=settings.annotations.connection_timeout_seconds,
                limit=settings.annotations.limit,
                subscription_prefix=settings.annotations.subscription_prefix,
            ),
            delivery=DeliveryPipeline(sink, settings.delivery.pacing_seconds),
            confirm=confirm,
        )


async def run(
    settings: Settings,
    *,
    after_tx: str | None = None,
    dry_run: bool = False,
    skip_confirm: bool = False,
) -> BackfillOutcome:
    """Main entry point. Validate credentials, wire modules, run once."""
    settings.validate_credentials()
    reference = after_tx or settings.after_tx
    bind_run_context(
        chain=settings.chain.name,
        token=settings.token.address,
        after_tx=reference,
        dry_run=dry_run,
    )
    logger.info("backfill_started", relays=len(settings.annotations.relays))

    try:
        async with open_pipeline(settings) as pipeline:
            return await pipeline.run(reference, dry_run=dry_run, skip_confirm=skip_confirm)
    finally:
        clear_run_context()

"""crawl_relay

Document evaluation pipeline and durable committer queue for crawlers.

Public API surface:
- crawl_relay.cli.main : CLI entrypoint
- crawl_relay.pipeline.session.CrawlSession : wire config -> pipeline -> queue -> committer
- crawl_relay.filters / crawl_relay.checksums : accept/reject and change detection
- crawl_relay.queue.CommitQueue : batched, crash-recoverable delivery
- crawl_relay.committer : committer SPI and reference committers

The package is modular so fetchers, frontiers and committers can be owned separately.
"""
__all__ = ["__version__"]
__version__ = "0.3.0"

"""Context processing runner entry point.

Embeds every context document that is not processed yet. With --refresh-all
every document is re-embedded, whether its source changed or not.

Usage:
    python -m services.context_rag.context_runner [--refresh-all]
"""

import argparse
import asyncio
import sys

from services.context_rag.ContextPipeline import ContextPipeline
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging


async def main(refresh_all: bool = False) -> int:
    """Run one processing pass.

    Returns:
        int: Process exit code, 1 if the pipeline could not start or any document failed.
    """
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    pipeline = ContextPipeline(helper_config=config)

    try:
        # without embeddings and vector storage there is nothing to do, so abort
        try:
            await pipeline.start()
        except Exception as e:
            logger.error(f"Error booting the context pipeline: {e}. Aborting.")
            return 1

        if refresh_all:
            results = await pipeline.processing_service.refresh_all()
        else:
            results = await pipeline.processing_service.process_all_unprocessed()

        for result in results:
            if not result.success:
                logger.warning("Context %s failed: %s", result.context_id, result.error)

        stats = await pipeline.processing_service.get_processing_stats()
        logger.info(
            "Contexts: %d total, %d processed, %d unprocessed, %d chunks stored.",
            stats.total_contexts, stats.processed_contexts, stats.unprocessed_contexts, stats.total_chunks,
            color="green",
        )
        return 0 if all(result.success for result in results) else 1
    finally:
        await pipeline.stop()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Embed context documents into the vector store.")
    parser.add_argument("--refresh-all", action="store_true", help="re-embed every document")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(refresh_all=args.refresh_all)))

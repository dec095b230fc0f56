"""Detection of attachments that nothing references."""

from __future__ import annotations

import logging

from sqlalchemy import Integer, cast, exists, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from media_janitor.db import models
from media_janitor.metrics.prometheus_exporter import orphan_scans_total, orphans_found

logger = logging.getLogger(__name__)


class OrphanFinder:
    """Builds and runs the single read that yields the orphan set."""

    def statement(self):
        """Return the SELECT for ids of unreferenced attachments.

        An attachment is an orphan when its parent reference does not resolve,
        nothing names it as parent, no ``featured-image`` entry points at it
        (compared as a number, so ``"010"`` matches id 10), and its guid
        appears in no content body and no metadata value.
        """

        att = aliased(models.Post, name="att")
        parent = aliased(models.Post, name="parent")
        child = aliased(models.Post, name="child")
        content = aliased(models.Post, name="content")
        thumb = aliased(models.PostMeta, name="thumb")
        meta = aliased(models.PostMeta, name="meta")

        parent_exists = exists().where(parent.id == att.post_parent)
        child_exists = exists().where(child.post_parent == att.id)
        featured = exists().where(
            thumb.meta_key == models.FEATURED_IMAGE_KEY,
            cast(thumb.meta_value, Integer) == att.id,
        )
        in_content = exists().where(
            content.post_type != models.ATTACHMENT_TYPE,
            content.post_content.contains(att.guid),
        )
        in_meta = exists().where(meta.meta_value.contains(att.guid))

        return (
            select(att.id)
            .where(
                att.post_type == models.ATTACHMENT_TYPE,
                ~parent_exists,
                ~child_exists,
                ~featured,
                ~in_content,
                ~in_meta,
            )
            .order_by(att.id)
        )

    async def find(self, session: AsyncSession) -> list[int]:
        """Return orphan attachment ids in ascending order."""

        result = await session.execute(self.statement())
        ids = list(result.scalars().all())
        orphan_scans_total.inc()
        orphans_found.set(len(ids))
        logger.info("Orphan scan found %d attachments", len(ids))
        return ids

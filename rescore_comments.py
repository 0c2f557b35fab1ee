#!/usr/bin/env python3
"""
Recompute the spam score of every stored comment
Run after the spam rules, blocked terms or threshold change
"""
import os
import sys
import logging
from datetime import datetime
from typing import Optional, Dict, List

from config.settings import Settings
from database.db_manager import DatabaseManager
from database.models import Comment
from moderation.spam_filter import SPAM_THRESHOLD, score_content

logger = logging.getLogger(__name__)


def rescore_comments(db_manager: DatabaseManager, batch_size: int = 50,
                     blocked_terms: Optional[Dict[str, List[str]]] = None,
                     threshold: int = SPAM_THRESHOLD) -> dict:
    """
    Rescore all comments in batches and store the new scores

    Args:
        db_manager: DatabaseManager instance
        batch_size: Comments read per batch
        blocked_terms: Disallowed-term categories overriding the built-in list
        threshold: Spam classification threshold

    Returns:
        Statistics: total, changed, failed and the ids of pending comments
        that now classify as spam
    """
    stats = {'total': 0, 'changed': 0, 'failed': 0, 'pending_spam': []}

    session = db_manager.get_session()
    try:
        total_count = session.query(Comment).count()
        stats['total'] = total_count
        logger.info(f"Comments in database: {total_count}")

        offset = 0
        while offset < total_count:
            comments = session.query(Comment).order_by(Comment.id).offset(offset).limit(batch_size).all()
            if not comments:
                break

            logger.info(
                f"--- Batch {offset // batch_size + 1} "
                f"({offset + 1}-{min(offset + len(comments), total_count)} of {total_count}) ---"
            )

            for comment in comments:
                result = score_content(comment.content or '', blocked_terms=blocked_terms, threshold=threshold)

                if result.is_spam and not comment.approved:
                    stats['pending_spam'].append(comment.id)
                    logger.info(f"Comment {comment.id}: pending and now spam ({result.reason})")

                if result.score == comment.spam_score:
                    continue

                try:
                    db_manager.update_comment(comment.id, spam_score=result.score)
                    stats['changed'] += 1
                    logger.debug(f"Comment {comment.id}: {comment.spam_score} -> {result.score}")
                except Exception as e:
                    logger.error(f"Comment {comment.id}: failed to store score - {e}", exc_info=True)
                    stats['failed'] += 1

            offset += batch_size
    finally:
        session.close()

    return stats


def main():
    """Entry point"""
    os.makedirs(Settings.LOG_DIR, exist_ok=True)
    log_filename = os.path.join(
        Settings.LOG_DIR, f"rescore_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    )
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_filename, encoding='utf-8'),
            logging.StreamHandler()
        ]
    )

    Settings.load()
    db_manager = DatabaseManager(Settings.DB_PATH)
    logger.info(f"Connected to database: {Settings.DB_PATH}")

    try:
        stats = rescore_comments(
            db_manager,
            blocked_terms=Settings.get_blocked_terms(),
            threshold=Settings.SPAM_THRESHOLD
        )
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

    logger.info("=" * 60)
    logger.info(f"Total comments: {stats['total']}")
    logger.info(f"Scores changed: {stats['changed']}")
    logger.info(f"Errors: {stats['failed']}")
    logger.info(f"Pending comments now classified as spam: {len(stats['pending_spam'])}")
    if stats['pending_spam']:
        logger.info(f"  IDs: {', '.join(str(i) for i in stats['pending_spam'])}")
    logger.info(f"Log saved to: {log_filename}")
    logger.info("=" * 60)


if __name__ == "__main__":
    main()

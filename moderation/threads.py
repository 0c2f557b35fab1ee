"""
Reply trees for the public comment view
"""
from typing import List, Dict, Optional

from database.schemas import CommentRecord

# Replies nested deeper than this are shown at the deepest level
MAX_DISPLAY_DEPTH = 3


def public_comment(comment: CommentRecord) -> dict:
    """Fields safe to show to readers (no email, IP or user agent)"""
    return {
        'id': comment.id,
        'parent_id': comment.parent_id,
        'content': comment.content,
        'author_name': comment.author_name,
        'author_website': comment.author_website,
        'is_anonymous': comment.is_anonymous,
        'upvotes': comment.upvotes,
        'downvotes': comment.downvotes,
        'created_at': comment.created_at,
        'replies': [],
    }


def build_comment_tree(comments: List[CommentRecord], max_depth: int = MAX_DISPLAY_DEPTH) -> List[dict]:
    """
    Arrange approved comments into a reply tree, oldest first

    Comments whose parent is missing from the list (deleted or not yet
    approved) are shown as top-level comments.
    """
    ordered = sorted(comments, key=lambda c: (c.created_at, c.id))
    nodes: Dict[int, dict] = {c.id: public_comment(c) for c in ordered}
    depths: Dict[int, int] = {}
    roots = []

    def depth_of(comment_id: int) -> int:
        if comment_id in depths:
            return depths[comment_id]
        parent_id: Optional[int] = nodes[comment_id]['parent_id']
        depth = 1 if parent_id not in nodes else depth_of(parent_id) + 1
        depths[comment_id] = depth
        return depth

    def display_parent(comment_id: int) -> Optional[int]:
        parent_id = nodes[comment_id]['parent_id']
        while parent_id in nodes and depth_of(parent_id) >= max_depth:
            parent_id = nodes[parent_id]['parent_id']
        return parent_id if parent_id in nodes else None

    for comment in ordered:
        parent_id = display_parent(comment.id)
        if parent_id is None:
            roots.append(nodes[comment.id])
        else:
            nodes[parent_id]['replies'].append(nodes[comment.id])

    return roots

import asyncio

from batchloader import LoaderScope, get_loader
from batchloader.utils.logging import setup_logging

AUTHORS = {1: "Ada", 2: "Grace", 3: "Barbara"}
POSTS = [
    {"title": "Engines", "author_id": 1},
    {"title": "Compilers", "author_id": 2},
    {"title": "Notes", "author_id": 1},
    {"title": "Abstractions", "author_id": 3},
]


async def fetch_authors(author_ids: list[int]) -> list:
    """Pretend database query: one round trip for every requested author."""
    print(f"SELECT * FROM authors WHERE id IN {tuple(author_ids)}")
    await asyncio.sleep(delay=0.01)
    return [AUTHORS.get(author_id, KeyError(author_id)) for author_id in author_ids]


async def resolve_author(post: dict) -> str:
    """Field resolver called once per post."""
    return await get_loader(fetch_authors).load(post["author_id"])


async def main() -> None:
    """Resolve the author of every post with a single query."""
    async with LoaderScope():
        authors = await asyncio.gather(*(resolve_author(post) for post in POSTS))
    for post, author in zip(POSTS, authors):
        print(f"{post['title']} by {author}")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())

"""Load demo articles and comments into the configured database."""
import argparse
import asyncio
import random
import time
from datetime import datetime, timedelta, timezone

from ssrblog.config import settings
from ssrblog.database import Base, build_engine, build_session_factory
from ssrblog.models import Article, ArticleStatus, Comment
from ssrblog.services.article_service import derive_summary, join_tags

TAGS = ["python", "fastapi", "postgresql", "redis", "docker", "kubernetes",
        "react", "typescript", "ssr", "devops", "testing", "performance",
        "security", "caching", "markdown", "rest-api"]

READERS = ["alice", "bob", "carol", "dave", "erin", "frank"]


async def seed(small: bool = False, reset: bool = False):
    num_articles = 50 if small else 5000
    max_comments = 2 if small else 5

    engine = build_engine(settings.DATABASE_URL)
    session_factory = build_session_factory(engine)

    print(f"Seeding: {num_articles} articles, up to {max_comments} comments each")
    start = time.perf_counter()

    async with engine.begin() as conn:
        if reset:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    total_comments = 0
    batch_size = 500
    async with session_factory() as session:
        for batch_start in range(0, num_articles, batch_size):
            batch: list[Article] = []
            for i in range(batch_start, min(batch_start + batch_size, num_articles)):
                topic = random.choice(TAGS)
                content = (
                    f"# Notes on {topic}\n\n"
                    + f"This is article {i}, a walkthrough of running **{topic}** in production. " * 8
                )
                article = Article(
                    title=f"Article {i}: running {topic} in production",
                    summary=derive_summary(content),
                    content=content,
                    tags=join_tags(random.sample(TAGS, k=random.randint(1, 4))),
                    # ~90% published, ~3% soft-deleted
                    status=(
                        ArticleStatus.PUBLISHED.value if random.random() > 0.1
                        else ArticleStatus.DRAFT.value
                    ),
                    is_deleted=random.random() < 0.03,
                    views=random.randint(0, 10000),
                    created_at=datetime.now(timezone.utc) - timedelta(days=random.randint(0, 365)),
                )
                session.add(article)
                batch.append(article)
            await session.flush()

            for article in batch:
                for _ in range(random.randint(0, max_comments)):
                    session.add(Comment(
                        article_id=article.id,
                        author_name=random.choice(READERS),
                        content=f"Thanks, this helped me with {article.title.split(': ')[-1]}.",
                    ))
                    total_comments += 1
            await session.flush()
            print(f"  Batch {batch_start}-{batch_start + len(batch)}: articles created")

        await session.commit()
    await engine.dispose()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Articles: {num_articles}")
    print(f"  Comments: {total_comments}")


def main():
    parser = argparse.ArgumentParser(description="Seed the blog database")
    parser.add_argument("--small", action="store_true", help="Use a small dataset (50 articles)")
    parser.add_argument("--reset", action="store_true", help="Drop existing tables first")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small, reset=args.reset))


if __name__ == "__main__":
    main()

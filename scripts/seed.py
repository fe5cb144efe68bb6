"""Seed script: populates a dev DB with sample threads and rules."""

import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from mailrules.config import get_settings
from mailrules.models.mailbox import INBOX_FOLDER_ID, Contact, Email, EmailContact, EmailThread
from mailrules.models.rule import Rule

SEED_USER_ID = uuid.UUID("aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee")

SAMPLE_MESSAGES = [
    ("GitHub", "notifications@github.com", "[org/repo] New issue opened"),
    ("GitHub", "notifications@github.com", "[org/repo] Pull request merged"),
    ("Boss", "boss@company.com", "Quarterly planning"),
    ("Newsletter", "news@weekly.example", "This week in Python"),
    ("Alice", "alice@example.org", "Lunch on Friday?"),
]


async def seed():
    settings = get_settings()
    engine = create_async_engine(settings.database_url, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    async with session_factory() as db:
        result = await db.execute(select(Rule.id).where(Rule.user_id == SEED_USER_ID).limit(1))
        if result.scalar():
            print("Seed data already exists, skipping.")
            await engine.dispose()
            return

        now = datetime.now(timezone.utc)
        me = Contact(email="dev@example.com", name="Dev User")
        db.add(me)
        await db.flush()

        for i, (name, address, subject) in enumerate(SAMPLE_MESSAGES):
            sender = Contact(email=address, name=name)
            thread = EmailThread(user_id=SEED_USER_ID, subject=subject, folder_id=INBOX_FOLDER_ID)
            db.add_all([sender, thread])
            await db.flush()

            email = Email(
                thread_id=thread.id,
                sender_id=sender.id,
                subject=subject,
                content_text=f"Sample body for {subject}",
                headers=[{"key": "List-Id", "value": f"List-Id: <{address.split('@')[1]}>"}],
                sent_at=now - timedelta(hours=i),
            )
            db.add(email)
            await db.flush()
            db.add(EmailContact(email_id=email.id, contact_id=me.id, role="to"))

        rules = [
            Rule(
                user_id=SEED_USER_ID,
                name="GitHub notifications",
                conditions={
                    "operator": "AND",
                    "conditions": [
                        {"field": "sender_email", "match_type": "ends_with", "value": "@github.com", "negate": False},
                    ],
                },
                action_type="mark_read",
                position=1,
            ),
            Rule(
                user_id=SEED_USER_ID,
                name="Set aside newsletters",
                conditions={
                    "operator": "OR",
                    "conditions": [
                        {"field": "sender_in_contacts", "match_type": "in_list", "value": json.dumps(["news@weekly.example"]), "negate": False},
                        {"field": "header:List-Id", "match_type": "contains", "value": "weekly", "negate": False},
                    ],
                },
                action_type="add_to_set_aside",
                position=2,
            ),
        ]
        db.add_all(rules)

        await db.commit()
        print(f"Seeded: {len(SAMPLE_MESSAGES)} threads, {len(rules)} rules for user {SEED_USER_ID}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())

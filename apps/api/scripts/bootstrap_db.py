"""Create database schema and seed a demo group for development."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete

from app.core.config import get_settings
from app.db.session import build_engine, build_session_factory, create_schema
from app.models.group import Group, GroupMember

GROUPS = [
	{
		"id": "group-demo",
		"name": "Demo Squad",
		"admin_id": "alice",
		"members": ["alice", "bob", "carol"],
	},
	{
		"id": "group-pair",
		"name": "Alice & Dave",
		"admin_id": "dave",
		"members": ["dave", "alice"],
	},
]


async def seed_groups(session_factory) -> None:
	"""Upsert the demo groups and replace their member lists."""

	base = datetime.now(timezone.utc)
	async with session_factory() as session:
		async with session.begin():
			for group_data in GROUPS:
				group = await session.get(Group, group_data["id"])
				if group is None:
					group = Group(
						id=group_data["id"],
						name=group_data["name"],
						admin_id=group_data["admin_id"],
						created_at=base,
					)
					session.add(group)
				else:
					group.name = group_data["name"]
					group.admin_id = group_data["admin_id"]

				await session.execute(
					delete(GroupMember).where(GroupMember.group_id == group_data["id"])
				)
				await session.flush()

				for offset, user_id in enumerate(group_data["members"]):
					session.add(
						GroupMember(
							group_id=group_data["id"],
							user_id=user_id,
							joined_at=base + timedelta(seconds=offset),
						)
					)


async def main() -> None:
	settings = get_settings()
	engine = build_engine(settings)
	try:
		await create_schema(engine)
		await seed_groups(build_session_factory(engine))
	finally:
		await engine.dispose()
	print("Database schema ensured and demo groups seeded.")


if __name__ == "__main__":
	asyncio.run(main())

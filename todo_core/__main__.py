"""
todo_core CLI
=============
Inspect and manage the local cache, and print the database schema.

Usage:
    python -m todo_core stats
    python -m todo_core groups
    python -m todo_core todos <group_id>
    python -m todo_core clear-cache --yes
    python -m todo_core schema

Commands only touch the local cache; nothing here talks to the server.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from todo_core.offline import LocalStore
from todo_core.settings import load_settings


SQL_SCHEMA = """
-- ============================================================================
-- TODO LIST SCHEMA FOR SUPABASE
-- ============================================================================
-- Run this SQL in your Supabase SQL Editor to create the tables

CREATE TABLE IF NOT EXISTS groups (
    id UUID DEFAULT gen_random_uuid() PRIMARY KEY,
    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    name TEXT NOT NULL DEFAULT '',
    theme TEXT NOT NULL DEFAULT 'default'
        CHECK (theme IN ('default', 'blue', 'green', 'purple', 'gray', 'pink')),
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT TIMEZONE('utc', NOW()),
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT TIMEZONE('utc', NOW())
);

CREATE TABLE IF NOT EXISTS todos (
    id UUID DEFAULT gen_random_uuid() PRIMARY KEY,
    group_id UUID NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    text TEXT NOT NULL DEFAULT '',
    completed BOOLEAN NOT NULL DEFAULT FALSE,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT TIMEZONE('utc', NOW()),
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT TIMEZONE('utc', NOW())
);

CREATE INDEX IF NOT EXISTS idx_groups_user_sort ON groups(user_id, sort_order);
CREATE INDEX IF NOT EXISTS idx_todos_group_sort ON todos(group_id, sort_order);

-- Row Level Security: every user only sees their own groups and their todos
ALTER TABLE groups ENABLE ROW LEVEL SECURITY;
ALTER TABLE todos ENABLE ROW LEVEL SECURITY;

CREATE POLICY "Users manage their own groups" ON groups
    FOR ALL
    USING (auth.uid() = user_id)
    WITH CHECK (auth.uid() = user_id);

CREATE POLICY "Users manage todos of their groups" ON todos
    FOR ALL
    USING (EXISTS (SELECT 1 FROM groups g WHERE g.id = todos.group_id AND g.user_id = auth.uid()))
    WITH CHECK (EXISTS (SELECT 1 FROM groups g WHERE g.id = todos.group_id AND g.user_id = auth.uid()));

-- Realtime change feed
ALTER PUBLICATION supabase_realtime ADD TABLE groups;
ALTER PUBLICATION supabase_realtime ADD TABLE todos;
"""


def print_sql_schema():
    """Print SQL schema for the groups and todos tables."""
    print(SQL_SCHEMA)


def open_store(data_dir: Optional[str]) -> LocalStore:
    settings = load_settings()
    if data_dir:
        settings.data_dir = Path(data_dir).expanduser()
    return LocalStore(settings.cache_dir)


def cmd_stats(store: LocalStore, args) -> int:
    stats = store.get_cache_stats()
    if stats is None:
        print("ERROR: Could not read cache statistics")
        return 1
    print(json.dumps(stats, indent=2))
    return 0


def cmd_groups(store: LocalStore, args) -> int:
    groups = sorted(store.get_groups(), key=lambda g: g.sort_order)
    if not groups:
        print("No cached groups.")
        return 0
    for group in groups:
        count = len(store.get_todos(group.id))
        print(f"{group.sort_order:>3}  {group.id}  [{group.theme.value}]  {group.name}  ({count} todos)")
    return 0


def cmd_todos(store: LocalStore, args) -> int:
    todos = sorted(store.get_todos(args.group_id), key=lambda t: t.sort_order)
    if not todos:
        print(f"No cached todos for group {args.group_id}.")
        return 0
    for todo in todos:
        mark = "x" if todo.completed else " "
        print(f"{todo.sort_order:>3}  [{mark}]  {todo.id}  {todo.text}")
    return 0


def cmd_clear_cache(store: LocalStore, args) -> int:
    if not args.yes:
        print("Refusing to clear the cache without --yes")
        return 1
    if not store.clear_all_cache():
        print("ERROR: Failed to clear the cache")
        return 1
    print(f"Cache cleared: {store.cache_dir}")
    return 0


def cmd_schema(store: Optional[LocalStore], args) -> int:
    print_sql_schema()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="todo_core", description="TodoList sync core tools")
    parser.add_argument("--data-dir", help="Data directory (default: TODO_DATA_DIR or ~/.todo-sync)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="Show cache statistics").set_defaults(func=cmd_stats)
    sub.add_parser("groups", help="List cached groups").set_defaults(func=cmd_groups)

    todos = sub.add_parser("todos", help="List cached todos of a group")
    todos.add_argument("group_id")
    todos.set_defaults(func=cmd_todos)

    clear = sub.add_parser("clear-cache", help="Delete every cache file")
    clear.add_argument("--yes", action="store_true", help="Confirm deletion")
    clear.set_defaults(func=cmd_clear_cache)

    sub.add_parser("schema", help="Print the Supabase SQL schema").set_defaults(func=cmd_schema)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "schema":
        return cmd_schema(None, args)
    return args.func(open_store(args.data_dir), args)


if __name__ == "__main__":
    sys.exit(main())

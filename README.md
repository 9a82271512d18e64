# gator

`gator` is a command-line RSS aggregator. You register users, add RSS
feeds, follow the feeds you care about, and let `gator` collect their
posts so you can browse the newest ones from your terminal.

It uses only the Python standard library and keeps its data in a local
SQLite database.

## Installation

```
pip install .
```

This installs the `gator` command.

## Configuration

`gator` reads its settings from `.gatorconfig.json` in your home
directory. The file must exist before the first run; it holds two keys:

```json
{"db_url": "/home/me/.gator.db", "current_user_name": ""}
```

- `db_url` is the path of the SQLite database file. It is created, with
  its tables, if it does not exist yet. If `db_url` is empty, `gator`
  stops with an error.
- `current_user_name` is the user you are logged in as. `gator` rewrites
  the file when you run `login` or `register`.

## Usage

Every invocation has the form:

```
gator <command> [arguments...]
```

The exit status is 0 on success, 1 on any error (the message goes to
standard error), and 130 when interrupted with Ctrl-C. An unknown
command name is an error.

### Users

```
gator register alice      # create a user and log in as them
gator login alice         # switch to an existing user
gator users               # list all users, marking the current one with "(current)"
gator reset               # delete all users, with their feeds, follows and posts
```

`register` fails if the name is already taken; `login` fails if the user
does not exist.

### Feeds

```
gator addfeed "Example News" https://example.com/rss.xml
gator feeds                              # list every feed and who added it
gator follow https://example.com/rss.xml
gator following                          # feeds the current user follows
gator unfollow https://example.com/rss.xml
```

`addfeed` creates the feed and follows it for the current user in one
step. Each feed URL can be added only once, and a user can follow a feed
only once. `addfeed`, `follow`, `unfollow` and `browse` need the current
user to exist in the database.

### Collecting posts

```
gator agg 1m
```

`agg` takes a positive interval made of number-and-unit parts, such as
`30s`, `1.5m`, `300ms` or `1h30m` (units `ns`, `us`, `ms`, `s`, `m`,
`h`). It fetches one feed straight away and then one more on every tick,
always picking the feed fetched longest ago; feeds never fetched come
first. Ticks missed while a fetch runs are dropped.

Every item of the fetched feed is stored as a post. Items whose link is
already stored are skipped. A `pubDate` in the form
`Mon, 02 Jan 2006 15:04:05 -0700` is kept as the publication time;
other forms leave it empty. Progress and failures are logged to standard
error. It runs until you stop it with Ctrl-C.

### Reading

```
gator browse        # the 2 newest posts from the feeds you follow
gator browse 10     # the 10 newest
```

Each post is shown with its publication time, title, description and
link. Posts without a publication time are listed first. The limit must
be a whole number that is not negative.

## Using it as a library

- `gator.config`: `Config`, `read_config`, `write_config`, `config_path`.
- `gator.database`: `Database` (open with `Database.open(path)`; usable as
  a context manager, with a `transaction()` context manager) and the
  errors `DatabaseError`, `NotFoundError` and `DuplicateError`.
- `gator.models`: the records `User`, `Feed`, `FeedFollow`,
  `FeedFollowRow`, `Post` and `PostWithFeed`.
- `gator.rss`: `parse_feed` and `fetch_feed`, returning `RSSFeed` with
  `RSSItem` entries, and raising `FeedError`.
- `gator.commands`: `Commands`, `Command`, `State`, `CommandError` and
  the `logged_in` wrapper.
- `gator.handlers`: the command handlers, `scrape_feeds`,
  `parse_duration` and `parse_pub_date`.
- `gator.cli`: `build_commands` and `main`.

## Limitations

- Only RSS documents (a `channel` with `item` elements) are read; Atom
  feeds yield no posts.
- Storage is SQLite only; `db_url` is a file path, not a server address.
- `agg` fetches one feed per tick, one after another; there is no
  parallel fetching.

## Running the tests

```
pip install ".[test]"
pytest
```
"""Flask CLI commands: ``flask --app library_circulation.app <command>``."""
import click
from flask import Flask, current_app
from flask.cli import with_appcontext

from library_circulation.models.book import Book
from library_circulation.models.database import init_db
from library_circulation.models.user import User


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create the database tables."""
    init_db()
    click.echo(f"Initialized database at {current_app.config['DATABASE_PATH']}")


@click.command('seed-demo')
@click.option('--password', default='password123', show_default=True,
              help='Password given to every demo account.')
@with_appcontext
def seed_demo_command(password):
    """Create demo accounts and books."""
    init_db()
    users = [
        User.create('Ava Admin', 'admin@example.com', password, role='admin'),
        User.create('Alice Reader', 'alice@example.com', password),
        User.create('Bob Student', 'bob@example.com', password, max_borrow_limit=2),
    ]
    books = [
        Book.create('Dune', 'Frank Herbert', '9780441172719', total_copies=2),
        Book.create("Harry Potter and the Sorcerer's Stone", 'J.K. Rowling',
                    '9780590353427', total_copies=1),
        Book.create('Clean Code', 'Robert C. Martin', '9780132350884', total_copies=3),
    ]
    click.echo('Users: ' + ', '.join(f'{u.email} ({u.role})' for u in users))
    click.echo('Books: ' + ', '.join(b.title for b in books))


@click.command('sweep-overdue')
@with_appcontext
def sweep_overdue_command():
    """Run one overdue sweep pass now."""
    from library_circulation.scheduled_tasks import OverdueSweeper

    result = OverdueSweeper(current_app._get_current_object()).run_once()
    click.echo(f'Marked overdue: {result.marked_overdue}, '
               f'fines updated: {result.fines_updated}, failed: {len(result.failed)}')


def register_commands(app: Flask) -> None:
    app.cli.add_command(init_db_command)
    app.cli.add_command(seed_demo_command)
    app.cli.add_command(sweep_overdue_command)

"""CLI interface for DashQL."""

import asyncio
import json
import logging
from typing import Any, Optional

import click
import duckdb

from .core import DEFAULT_ROOT, QueryEngine
from .exceptions import DashQLError
from .planning import PathResolver
from .schema import DuckDBIntrospector, MongoIntrospector, QueryRequest, RelationGraph


relations_option = click.option(
    '--relations', '-r',
    envvar='DASHQL_RELATIONS',
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help='JSON file with the ordered relation list (env: DASHQL_RELATIONS)'
)
default_root_option = click.option(
    '--default-root',
    envvar='DASHQL_DEFAULT_ROOT',
    default=DEFAULT_ROOT,
    show_default=True,
    help='Hub entity used when the request names no root (env: DASHQL_DEFAULT_ROOT)'
)
request_option = click.option(
    '--request', 'request_file',
    type=click.File('r'),
    default='-',
    help='JSON request body (defaults to stdin)'
)
verbose_option = click.option('--verbose', '-v', is_flag=True, help='Verbose error output')


def _report_error(e: Exception, verbose: bool) -> None:
    if isinstance(e, DashQLError):
        click.echo(f"\n❌ {e.error_code}: {e.message}", err=True)
        if e.context:
            click.echo(f"📍 Context: {e.context}", err=True)
        if e.suggestions:
            click.echo("\n💡 Suggestions:", err=True)
            for suggestion in e.suggestions:
                click.echo(f"   • {suggestion}", err=True)
        if verbose:
            click.echo(f"\n🔍 Correlation ID: {e.correlation_id}", err=True)
    else:
        click.echo(f"\n❌ Unexpected Error: {e}", err=True)
        if verbose:
            import traceback
            click.echo("\n🔍 Stack trace:", err=True)
            click.echo(traceback.format_exc(), err=True)


def _load_request(request_file: Any, root: Optional[str]) -> QueryRequest:
    try:
        body = json.load(request_file)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"request is not valid JSON (line {e.lineno})", param_hint='--request')

    request = QueryRequest.from_dict(body)
    if root:
        request.root = root
    return request


def _dump(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
def cli():
    """DashQL - declarative filter and aggregation queries over related entities."""
    pass


@cli.command()
@relations_option
@click.argument('from_entity')
@click.argument('to_entity')
@verbose_option
def path(relations: str, from_entity: str, to_entity: str, verbose: bool):
    """Show the shortest join path between two entities."""
    try:
        graph = RelationGraph.from_file(relations)
    except DashQLError as e:
        _report_error(e, verbose)
        raise click.Abort()

    found = PathResolver(graph).find_path(from_entity, to_entity)
    if found is None:
        click.echo(f"❌ No path from '{from_entity}' to '{to_entity}'", err=True)
        raise click.Abort()

    click.echo(" -> ".join(found))


@cli.command()
@relations_option
@request_option
@click.option('--root', default=None, help='Root entity, overriding the request')
@default_root_option
@click.option('--strict/--lenient', default=True, help='Fail on unreachable entities or plan without them')
@verbose_option
def plan(relations: str, request_file: Any, root: Optional[str], default_root: str,
         strict: bool, verbose: bool):
    """Print the join plan for a request without running it."""
    try:
        graph = RelationGraph.from_file(relations)
        request = _load_request(request_file, root)

        # Planning needs no backend
        engine = QueryEngine(graph, executor=None, default_root=default_root, strict_paths=strict)
        _dump(engine.plan(request).to_dict())

    except DashQLError as e:
        _report_error(e, verbose)
        raise click.Abort()


@cli.command()
@relations_option
@request_option
@click.option('--database', '-d', type=click.Path(exists=True, dir_okay=False), help='DuckDB database file')
@click.option('--mongo-uri', default=None, help='MongoDB connection URI')
@click.option('--mongo-db', default=None, help='MongoDB database name (defaults to the URI database)')
@click.option('--root', default=None, help='Root entity, overriding the request')
@default_root_option
@click.option('--strict/--lenient', default=True, help='Fail on unreachable entities or plan without them')
@click.option('--enhance/--no-enhance', default=True, help='Add names of referenced records')
@click.option('--limit', default=None, type=int, help='Maximum number of detail rows')
@click.option('--log-queries/--no-log-queries', default=False, help='Log all statements')
@click.option('--slow-query-ms', default=1000, type=int, help='Slow statement threshold in milliseconds')
@verbose_option
def query(relations: str, request_file: Any, database: Optional[str], mongo_uri: Optional[str],
          mongo_db: Optional[str], root: Optional[str], default_root: str, strict: bool,
          enhance: bool, limit: Optional[int], log_queries: bool, slow_query_ms: int, verbose: bool):
    """Run a request against a DuckDB file or a MongoDB database."""
    if log_queries:
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    if bool(database) == bool(mongo_uri):
        raise click.UsageError("Pass exactly one of --database or --mongo-uri")

    client = None
    conn = None
    engine = None
    try:
        graph = RelationGraph.from_file(relations)
        request = _load_request(request_file, root)
        options = dict(
            enhance=enhance,
            default_root=default_root,
            strict_paths=strict,
            log_queries=log_queries,
            slow_query_ms=slow_query_ms,
        )

        if database:
            from .execution import SQLTranslator
            conn = duckdb.connect(database, read_only=True)
            engine = QueryEngine.for_duckdb(conn, graph, translator=SQLTranslator(row_limit=limit), **options)
        else:
            from pymongo import MongoClient
            from .execution import PipelineTranslator
            client = MongoClient(mongo_uri)
            mongo = client[mongo_db] if mongo_db else client.get_default_database()
            engine = QueryEngine.for_mongo(mongo, graph, translator=PipelineTranslator(row_limit=limit), **options)

        response = asyncio.run(engine.run(request))
        _dump(response.to_dict())

    except DashQLError as e:
        _report_error(e, verbose)
        raise click.Abort()

    except click.ClickException:
        raise

    except Exception as e:
        _report_error(e, verbose)
        raise click.Abort()

    finally:
        if engine:
            engine.close()
        if conn:
            conn.close()
        if client:
            client.close()


@cli.command()
@click.argument('database', required=False, type=click.Path(exists=True, dir_okay=False))
@click.option('--mongo-uri', default=None, help='MongoDB connection URI')
@click.option('--mongo-db', default=None, help='MongoDB database name (defaults to the URI database)')
def fields(database: Optional[str], mongo_uri: Optional[str], mongo_db: Optional[str]):
    """List the filterable fields of a DuckDB database or MongoDB database."""
    if bool(database) == bool(mongo_uri):
        raise click.UsageError("Pass exactly one of DATABASE or --mongo-uri")

    client = None
    conn = None
    try:
        if database:
            conn = duckdb.connect(database, read_only=True)
            introspector = DuckDBIntrospector(conn)
        else:
            from pymongo import MongoClient
            client = MongoClient(mongo_uri)
            mongo = client[mongo_db] if mongo_db else client.get_default_database()
            introspector = MongoIntrospector(mongo)

        for ref in introspector.get_fields():
            click.echo(str(ref))

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()

    finally:
        if conn:
            conn.close()
        if client:
            client.close()


if __name__ == '__main__':
    cli()

"""HTTP API for the memrecall daemon."""

from aiohttp import web
from loguru import logger

from .errors import ValidationError
from .models import SearchRequest


@web.middleware
async def cors_middleware(request: web.Request, handler):
    """Allow the overlay UI (a different origin) to call the API."""
    response = await handler(request)
    response.headers['Access-Control-Allow-Origin'] = '*'
    response.headers['Access-Control-Allow-Methods'] = 'GET, OPTIONS'
    response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
    return response


def create_api_app(daemon) -> web.Application:
    """Create the aiohttp application with routes."""
    app = web.Application(middlewares=[cors_middleware])
    app['daemon'] = daemon

    app.router.add_get('/search', handle_search)
    app.router.add_get('/recent', handle_recent)
    app.router.add_get('/stats', handle_stats)
    app.router.add_get('/health', handle_health)
    app.router.add_get('/metrics', handle_metrics)

    return app


async def handle_search(request: web.Request) -> web.Response:
    """Handle search requests."""
    daemon = request.app['daemon']
    orchestrator = daemon.orchestrator
    search_config = daemon.config.search

    try:
        search_request = SearchRequest.from_query(
            request.query,
            default_k=search_config.default_k,
            max_k=search_config.max_k,
        )
    except ValidationError as e:
        logger.info(f"Rejected search request: {e}")
        orchestrator.metrics.increment_counter("search.validation_error")
        return web.json_response(e.to_dict(), status=400)

    try:
        response = await orchestrator.search(search_request)
    except Exception as e:
        logger.exception(f"Search error: {e}")
        return web.json_response(
            {'error': {'code': 'search_error', 'message': str(e)}},
            status=500
        )

    return web.json_response(response.to_dict())


async def handle_recent(request: web.Request) -> web.Response:
    """Most recent memories, newest first."""
    daemon = request.app['daemon']

    raw_limit = request.query.get('limit', '20')
    try:
        limit = int(raw_limit)
    except ValueError:
        limit = 0
    if not 1 <= limit <= 100:
        error = ValidationError('limit', 'limit must be an integer between 1 and 100')
        return web.json_response(error.to_dict(), status=400)

    try:
        cards = await daemon.orchestrator.recent(limit)
    except Exception as e:
        logger.error(f"Recent memories error: {e}")
        return web.json_response(
            {'error': {'code': 'internal_error', 'message': str(e)}},
            status=500
        )

    return web.json_response({
        'mode': 'recent',
        'cards': [card.to_dict() for card in cards],
    })


async def handle_stats(request: web.Request) -> web.Response:
    """Store, cache and channel statistics."""
    daemon = request.app['daemon']

    try:
        stats = await daemon.orchestrator.stats()
        return web.json_response(stats)
    except Exception as e:
        logger.error(f"Stats error: {e}")
        return web.json_response(
            {'error': {'code': 'internal_error', 'message': str(e)}},
            status=500
        )


async def handle_health(request: web.Request) -> web.Response:
    """Health check endpoint."""
    daemon = request.app['daemon']
    return web.json_response(daemon.get_status())


async def handle_metrics(request: web.Request) -> web.Response:
    """Export metrics."""
    daemon = request.app['daemon']
    format = request.query.get('format', 'json')
    metrics = daemon.orchestrator.metrics

    try:
        if format == 'prometheus':
            return web.Response(
                text=metrics.export_metrics('prometheus'),
                content_type='text/plain'
            )
        else:
            return web.Response(
                text=metrics.export_metrics('json'),
                content_type='application/json'
            )
    except Exception as e:
        return web.json_response({'error': str(e)}, status=500)

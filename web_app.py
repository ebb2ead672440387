#!/usr/bin/env python3
"""
linkpulse web API
Batch triggers for the pipeline stages plus read endpoints for ranked links
and stories.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from functools import wraps

from dotenv import load_dotenv
from flask import Flask, jsonify, request

from linkpulse.config import PipelineConfig
from linkpulse.ingestion.feeds import extract_links_from_html
from linkpulse.ingestion.ingestor import UnknownSource
from linkpulse.pipeline import build_pipeline
from linkpulse.storage.postgres_repo import PostgresLinkStore
from linkpulse.storage.postgres_schema import ensure_postgres_schema

load_dotenv()

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['JSON_SORT_KEYS'] = False


def get_pipeline():
    """Pipeline for this process; tests inject one through app.config['PIPELINE']."""
    pipeline = app.config.get('PIPELINE')
    if pipeline is None:
        config = PipelineConfig.from_env()
        ensure_postgres_schema(config.pg_dsn)
        pipeline = build_pipeline(config, PostgresLinkStore(config.pg_dsn))
        app.config['PIPELINE'] = pipeline
    return pipeline


def require_cron_secret(f):
    """Bearer-token guard for batch endpoints; open when CRON_SECRET is unset."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = get_pipeline().config.cron_secret
        if secret and request.headers.get('Authorization', '') != f"Bearer {secret}":
            return jsonify({'success': False, 'error': 'Unauthorized'}), 401
        return f(*args, **kwargs)
    return decorated


def _int_arg(value, default: int, lo: int, hi: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        n = default
    return max(lo, min(n, hi))


@app.route('/api/health', methods=['GET'])
def health():
    return jsonify({'success': True, 'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat()})


@app.route('/api/cron/enrich', methods=['POST'])
@require_cron_secret
def cron_enrich():
    """Run one enrichment batch."""
    try:
        summary = get_pipeline().enrichment.run_batch()
        return jsonify({'success': True, 'summary': summary.as_dict()})
    except Exception as e:
        logger.error(f"Error in enrichment batch: {e}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500


@app.route('/api/cron/embeddings', methods=['POST'])
@require_cron_secret
def cron_embeddings():
    """Generate embeddings for recent links that lack one."""
    try:
        data = request.get_json(silent=True) or {}
        pipeline = get_pipeline()
        limit = _int_arg(data.get('limit'), pipeline.config.embedding_batch_limit, 1, 500)
        summary = pipeline.embeddings.generate_missing(limit)
        return jsonify({'success': True, 'summary': summary.as_dict()})
    except Exception as e:
        logger.error(f"Error generating embeddings: {e}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500


@app.route('/api/cron/clustering', methods=['POST'])
@require_cron_secret
def cron_clustering():
    """Cluster recent embedded links into stories."""
    try:
        summary = get_pipeline().clusterer.run()
        return jsonify({'success': True, 'summary': summary.as_dict()})
    except Exception as e:
        logger.error(f"Error in clustering: {e}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500


@app.route('/api/cron/fetch-rss', methods=['POST'])
@require_cron_secret
def cron_fetch_rss():
    """Poll all active RSS sources."""
    try:
        summary = get_pipeline().fetch_rss_sources()
        return jsonify({'success': True, 'summary': summary})
    except Exception as e:
        logger.error(f"Error fetching RSS feeds: {e}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500


@app.route('/api/ingest', methods=['POST'])
@require_cron_secret
def ingest():
    """Ingest URLs (or the links inside an HTML body) for one source."""
    data = request.get_json(silent=True) or {}
    source_id = str(data.get('sourceId') or '').strip()
    if not source_id:
        return jsonify({'success': False, 'error': 'sourceId is required'}), 400
    urls = data.get('urls')
    if urls is None and data.get('html'):
        urls = [{'url': u} for u in extract_links_from_html(data.get('html'))]
    if not isinstance(urls, list):
        return jsonify({'success': False, 'error': 'urls must be a list'}), 400
    try:
        summary = get_pipeline().ingestor.ingest(urls, source_id)
        return jsonify({'success': True, 'summary': summary.as_dict()})
    except UnknownSource as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except (TypeError, ValueError) as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error ingesting links for {source_id}: {e}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500


@app.route('/api/links/velocity', methods=['GET'])
def velocity_links():
    """Links ranked by weighted cross-source velocity."""
    try:
        hours = _int_arg(request.args.get('hours'), 72, 1, 24 * 30)
        limit = _int_arg(request.args.get('limit'), 50, 1, 200)
        offset = _int_arg(request.args.get('offset'), 0, 0, 10_000)
        filters = {}
        if request.args.get('domain'):
            filters['domain'] = request.args.get('domain')
        if request.args.get('source'):
            filters['source_id'] = request.args.get('source')
        if request.args.get('trending', '').lower() in ('1', 'true', 'yes'):
            filters['trending_only'] = True
        now = datetime.now(timezone.utc)
        links = get_pipeline().velocity.get_velocity_links(now - timedelta(hours=hours), limit, filters, offset=offset, now=now)
        data = [item.to_dict() for item in links]
        return jsonify({'success': True, 'data': data, 'count': len(data), 'timestamp': now.isoformat()})
    except Exception as e:
        logger.error(f"Error in velocity links: {e}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500


@app.route('/api/links/trending', methods=['GET'])
def trending_links():
    try:
        limit = _int_arg(request.args.get('limit'), 20, 1, 100)
        data = [item.to_dict() for item in get_pipeline().velocity.get_trending_links(limit)]
        return jsonify({'success': True, 'data': data, 'count': len(data)})
    except Exception as e:
        logger.error(f"Error in trending links: {e}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500


@app.route('/api/stories', methods=['GET'])
def stories():
    try:
        limit = _int_arg(request.args.get('limit'), 20, 1, 100)
        data = [s.to_dict() for s in get_pipeline().clusterer.get_stories(limit)]
        return jsonify({'success': True, 'data': data, 'count': len(data)})
    except Exception as e:
        logger.error(f"Error listing stories: {e}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500


@app.route('/api/blacklist', methods=['GET', 'POST'])
@require_cron_secret
def blacklist():
    try:
        store = get_pipeline().store
        if request.method == 'POST':
            data = request.get_json(silent=True) or {}
            try:
                entry = store.add_blacklist_entry(
                    str(data.get('type') or '').strip().lower(),
                    str(data.get('pattern') or ''),
                    data.get('reason'),
                )
            except ValueError as e:
                return jsonify({'success': False, 'error': str(e)}), 400
            return jsonify({'success': True, 'entry': {'id': entry.id, 'type': entry.type, 'pattern': entry.pattern, 'reason': entry.reason}})
        entries = [{'id': e.id, 'type': e.type, 'pattern': e.pattern, 'reason': e.reason} for e in store.list_blacklist()]
        return jsonify({'success': True, 'data': entries, 'count': len(entries)})
    except Exception as e:
        logger.error(f"Error in blacklist endpoint: {e}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500


if __name__ == '__main__':
    port = int(os.environ.get('PORT', '5002'))
    app.run(host='0.0.0.0', port=port, debug=False)

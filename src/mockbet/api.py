import asyncio
import logging
from typing import Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from .config import DB_PATH
from .exceptions import BetError, MatchNotFoundError, ValidationError
from .models import MatchStatus
from .placement import BetPlacement
from .resolver import BetResolver
from .status import advance_match_statuses
from .storage import Storage

logger = logging.getLogger(__name__)


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        if request.data:
            raise ValidationError("Invalid JSON")
        return {}
    if not isinstance(body, dict):
        raise ValidationError("JSON body must be an object")
    return body


def create_app(storage: Optional[Storage] = None, resolver: Optional[BetResolver] = None) -> Flask:
    storage = storage or Storage(DB_PATH)
    resolver = resolver or BetResolver(storage)
    placement = BetPlacement(storage)

    app = Flask(__name__)
    app.config["STORAGE"] = storage
    app.config["RESOLVER"] = resolver

    @app.errorhandler(BetError)
    def handle_bet_error(e: BetError):
        if e.status_code >= 500:
            logger.error(f"{request.path} failed: {e}")
        return jsonify({"error": str(e)}), e.status_code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        logger.error(f"Unhandled error on {request.path}: {e}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500

    @app.route('/api/health')
    def health():
        return jsonify({"status": "ok"})

    # --- Matches ---

    @app.route('/api/matches')
    def list_matches():
        status = request.args.get('status')
        league = request.args.get('league')
        if status:
            try:
                status = MatchStatus(status)
            except ValueError:
                raise ValidationError("Invalid status. Must be upcoming, live, or finished") from None

        async def _list():
            await advance_match_statuses(storage)
            return await storage.list_matches(status=status, league=league)

        matches = asyncio.run(_list())
        return jsonify({"matches": [m.to_dict() for m in matches]})

    @app.route('/api/matches/<match_id>/result')
    def match_result(match_id):
        match = asyncio.run(storage.find_match(match_id))
        if not match:
            raise MatchNotFoundError("Match not found")
        return jsonify({"match": {
            "id": match.id,
            "homeTeam": match.home_team,
            "awayTeam": match.away_team,
            "status": match.status.value,
            "result": match.result.value if match.result else None,
        }})

    @app.route('/api/matches/resolve', methods=['POST'])
    def resolve_match():
        body = _json_body()
        match_id = body.get('matchId')
        if not match_id:
            raise ValidationError("Match ID is required")

        if body.get('simulate'):
            summary = asyncio.run(resolver.simulate_match(match_id))
        else:
            result = body.get('result')
            if not result:
                raise ValidationError("Valid result (Home, Draw or Away) is required")
            summary = asyncio.run(resolver.resolve_match(match_id, result))

        return jsonify(summary.to_dict())

    # --- Bets ---

    @app.route('/api/bets/resolve', methods=['POST'])
    def resolve_bets():
        report = asyncio.run(resolver.run_settlement_pass())
        return jsonify(report.to_dict())

    @app.route('/api/bets/place', methods=['POST'])
    def place_bet():
        body = _json_body()
        bet, new_balance = asyncio.run(placement.place_bet(
            user_id=body.get('userId'),
            match_id=body.get('matchId'),
            amount=body.get('amount'),
            choice=body.get('choice'),
            currency=body.get('stakeType', 'tokens'),
        ))
        return jsonify({
            "message": "Bet placed successfully!",
            "bet": bet.to_dict(),
            "newBalance": new_balance,
        }), 201

    @app.route('/api/bets/combo', methods=['POST'])
    def place_combo():
        body = _json_body()
        selections = body.get('selections')
        if not isinstance(selections, list):
            raise ValidationError("Selections must be a list")
        combo, new_balance = asyncio.run(placement.place_combo_bet(
            user_id=body.get('userId'),
            selections=selections,
            amount=body.get('amount'),
            currency=body.get('stakeType', 'tokens'),
        ))
        return jsonify({
            "message": "Combo bet placed successfully!",
            "bet": combo.to_dict(),
            "newBalance": new_balance,
        }), 201

    @app.route('/api/bets')
    def list_bets():
        user_id = request.args.get('userId')
        if not user_id:
            raise ValidationError("User ID is required")
        state = request.args.get('status')
        if state not in (None, 'active', 'history'):
            raise ValidationError("Invalid status. Must be active or history")
        bets = asyncio.run(storage.list_user_bets(user_id, state))
        return jsonify({"bets": [b.to_dict() for b in bets]})

    return app

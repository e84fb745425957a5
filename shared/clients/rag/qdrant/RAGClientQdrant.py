from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.models.config import EnvConfig
from shared.models.context import ScopeKind


class RAGClientQdrant(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_name = self.get_config_val("COLLECTION", default="context_chunks", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    def get_collection_name(self) -> str:
        return self._collection_name

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="COLLECTION", val_type="string", default="context_chunks")
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_points(self) -> str:
        return f"/collections/{self._collection_name}/points"

    def _get_endpoint_search(self) -> str:
        return f"/collections/{self._collection_name}/points/search"

    def _get_endpoint_delete_points(self) -> str:
        return f"/collections/{self._collection_name}/points/delete"

    def _get_endpoint_check_collection_existence(self) -> str:
        return f"/collections/{self._collection_name}/exists"

    def _get_endpoint_collection(self) -> str:
        return f"/collections/{self._collection_name}"

    def _get_endpoint_payload_index(self) -> str:
        return f"/collections/{self._collection_name}/index"

    def _get_endpoint_count(self) -> str:
        return f"/collections/{self._collection_name}/points/count"

    ##########################################
    ############ FILTER BUILDER ##############
    ##########################################

    @staticmethod
    def _match(key: str, value: str) -> dict:
        return {"key": key, "match": {"value": value}}

    def get_scope_filter(self, user_id: str, guild_id: str | None = None) -> dict:
        should: list[dict] = [self._match("scope", ScopeKind.GLOBAL.value)]
        if guild_id:
            should.append({
                "must": [
                    self._match("scope", ScopeKind.GUILD.value),
                    self._match("targetGuildId", str(guild_id)),
                ]
            })
        should.append({
            "must": [
                self._match("scope", ScopeKind.USER.value),
                self._match("targetUserId", str(user_id)),
            ]
        })
        return {"should": should}

    def get_context_filter(self, context_id: str) -> dict:
        return {"must": [self._match("contextId", context_id)]}

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        return {"vectors": {"size": vector_size, "distance": distance}}

    def get_payload_index_payload(self, field_name: str) -> dict:
        return {"field_name": field_name, "field_schema": "keyword"}

    def get_upsert_payload(self, points: list[dict]) -> dict:
        return {"points": points}

    def get_search_payload(self, query_vector: list[float], filter: dict, limit: int, score_threshold: float | None) -> dict:
        payload = {
            "vector": query_vector,
            "filter": filter,
            "limit": limit,
            "with_payload": True,
            "with_vector": False,
        }
        if score_threshold is not None:
            payload["score_threshold"] = score_threshold
        return payload

    def get_count_payload(self, filter: dict, exact: bool) -> dict:
        return {"filter": filter, "exact": exact}

    def get_delete_payload(self, filter: dict) -> dict:
        return {"filter": filter}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_search_hits(self, raw_response: dict) -> list[dict]:
        return raw_response.get("result") or []

    def extract_points_count(self, raw_response: dict) -> int:
        return int(raw_response.get("result", {}).get("points_count") or 0)

from n8n_draft_agent.catalog.catalog import DEFAULT_SEARCH_LIMIT, NodeCatalog, NodeSearchResult

__all__ = ["DEFAULT_SEARCH_LIMIT", "NodeCatalog", "NodeSearchResult"]

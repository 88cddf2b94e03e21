# storefront/api/routers/blog.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from storefront.api.deps import get_blog_repo, require_api_key
from storefront.domain.errors import ConflictError
from storefront.domain.schemas import BlogPageOut, BlogPostIn, BlogPostOut, BlogPostUpdate
from storefront.repos.blog_repo import BlogRepo

router = APIRouter(prefix="/api/blog", tags=["blog"])


@router.get("/posts", response_model=BlogPageOut)
def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: str | None = Query(default=None),
    repo: BlogRepo = Depends(get_blog_repo),
):
    return repo.list(page=page, limit=limit, category=category)


@router.get("/categories", response_model=List[str])
def list_categories(repo: BlogRepo = Depends(get_blog_repo)):
    return repo.categories()


@router.get("/posts/{identifier}", response_model=BlogPostOut)
def get_post(identifier: str, repo: BlogRepo = Depends(get_blog_repo)):
    post = repo.get(identifier)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@router.post(
    "/posts",
    response_model=BlogPostOut,
    status_code=201,
    dependencies=[Depends(require_api_key)],
)
def create_post(payload: BlogPostIn, repo: BlogRepo = Depends(get_blog_repo)):
    try:
        return repo.create(payload.model_dump())
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put(
    "/posts/{post_id}",
    response_model=BlogPostOut,
    dependencies=[Depends(require_api_key)],
)
def update_post(post_id: str, payload: BlogPostUpdate, repo: BlogRepo = Depends(get_blog_repo)):
    try:
        post = repo.update(post_id, payload.model_dump(exclude_unset=True))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@router.delete("/posts/{post_id}", dependencies=[Depends(require_api_key)])
def delete_post(post_id: str, repo: BlogRepo = Depends(get_blog_repo)):
    if not repo.delete(post_id):
        raise HTTPException(status_code=404, detail="Post not found")
    return {"deleted": True}

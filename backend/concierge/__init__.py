"""商品推荐问卷服务"""

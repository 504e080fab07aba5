"""外部协作方：仓库客户端、下载器、服务容器"""
